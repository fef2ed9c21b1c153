from learnhub.routers import admin, auth, certificates, courses, faq, health, leader, progress, quizzes

__all__ = [
    "admin",
    "auth",
    "certificates",
    "courses",
    "faq",
    "health",
    "leader",
    "progress",
    "quizzes",
]
