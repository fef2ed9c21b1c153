from learnhub.models.user import User, UserRole
from learnhub.models.account_token import AccountToken, AccountTokenPurpose
from learnhub.models.course import Course, Lesson, Module
from learnhub.models.quiz import Quiz, QuizAnswerOption, QuizQuestion, QuizScope
from learnhub.models.attempt import QuizAttempt, QuizResponse
from learnhub.models.progress import LessonProgress
from learnhub.models.certificate import Certificate
from learnhub.models.group import CourseAccess, Group, GroupMember
from learnhub.models.faq import FaqEntry, FaqNote, FaqSectionAccess
from learnhub.models.audit import LearningEvent, LearningEventType
from learnhub.models.security_audit import SecurityAuditEvent

__all__ = [
    "User",
    "UserRole",
    "AccountToken",
    "AccountTokenPurpose",
    "Course",
    "Module",
    "Lesson",
    "Quiz",
    "QuizScope",
    "QuizQuestion",
    "QuizAnswerOption",
    "QuizAttempt",
    "QuizResponse",
    "LessonProgress",
    "Certificate",
    "Group",
    "GroupMember",
    "CourseAccess",
    "FaqEntry",
    "FaqSectionAccess",
    "FaqNote",
    "LearningEvent",
    "LearningEventType",
    "SecurityAuditEvent",
]
