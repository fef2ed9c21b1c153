"""create learnhub schema

Revision ID: 0001
Revises: 
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("full_name", sa.String(length=300), nullable=True),
        sa.Column("role", sa.Enum("employee", "leader", "admin", name="userrole"), nullable=False),
        _created_at(),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
    )
    op.create_index("ix_users_name", "users", ["name"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "courses",
        _uuid_pk(),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )
    op.create_index("ix_courses_title", "courses", ["title"], unique=False)

    op.create_table(
        "modules",
        _uuid_pk(),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_modules_course_id", "modules", ["course_id"], unique=False)

    op.create_table(
        "lessons",
        _uuid_pk(),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("module_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("modules.id"), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("content", sa.String(), nullable=False, server_default=""),
        sa.Column("video_url", sa.String(length=1000), nullable=True),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_lessons_course_id", "lessons", ["course_id"], unique=False)
    op.create_index("ix_lessons_module_id", "lessons", ["module_id"], unique=False)

    op.create_table(
        "quizzes",
        _uuid_pk(),
        sa.Column("title", sa.String(length=300), nullable=False, server_default=""),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("lesson_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("lessons.id"), nullable=True),
        sa.Column("module_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("modules.id"), nullable=True),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("is_final_exam", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.CheckConstraint("passing_score >= 0 AND passing_score <= 100", name="ck_quiz_passing_score"),
        sa.CheckConstraint(
            "(CASE WHEN lesson_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN module_id IS NOT NULL THEN 1 ELSE 0 END)"
            " + (CASE WHEN is_final_exam THEN 1 ELSE 0 END) = 1",
            name="ck_quiz_single_scope",
        ),
    )
    op.create_index("ix_quizzes_lesson_id", "quizzes", ["lesson_id"], unique=False)
    op.create_index("ix_quizzes_module_id", "quizzes", ["module_id"], unique=False)
    op.create_index("ix_quizzes_course_id", "quizzes", ["course_id"], unique=False)

    op.create_table(
        "quiz_questions",
        _uuid_pk(),
        sa.Column("quiz_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("prompt", sa.String(), nullable=False, server_default=""),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_index("ix_quiz_questions_quiz_id", "quiz_questions", ["quiz_id"], unique=False)

    op.create_table(
        "quiz_answer_options",
        _uuid_pk(),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quiz_questions.id"), nullable=False),
        sa.Column("text", sa.String(), nullable=False, server_default=""),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_quiz_answer_options_question_id", "quiz_answer_options", ["question_id"], unique=False)

    op.create_table(
        "quiz_attempts",
        _uuid_pk(),
        sa.Column("quiz_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quizzes.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("attempt_no", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("passed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("correct_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_questions", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.UniqueConstraint("user_id", "quiz_id", "attempt_no", name="uq_quiz_attempt_no"),
    )
    op.create_index("ix_quiz_attempts_quiz_id", "quiz_attempts", ["quiz_id"], unique=False)
    op.create_index("ix_quiz_attempts_user_id", "quiz_attempts", ["user_id"], unique=False)

    op.create_table(
        "quiz_responses",
        _uuid_pk(),
        sa.Column("attempt_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quiz_attempts.id"), nullable=False),
        sa.Column("question_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quiz_questions.id"), nullable=False),
        sa.Column("option_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("quiz_answer_options.id"), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_quiz_response_question"),
    )
    op.create_index("ix_quiz_responses_attempt_id", "quiz_responses", ["attempt_id"], unique=False)
    op.create_index("ix_quiz_responses_question_id", "quiz_responses", ["question_id"], unique=False)

    op.create_table(
        "lesson_progress",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("lesson_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("lessons.id"), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("video_position_seconds", sa.Integer(), nullable=False, server_default="0"),
        _created_at("updated_at"),
        sa.UniqueConstraint("user_id", "lesson_id", name="uq_lesson_progress_user_lesson"),
    )
    op.create_index("ix_lesson_progress_user_id", "lesson_progress", ["user_id"], unique=False)
    op.create_index("ix_lesson_progress_lesson_id", "lesson_progress", ["lesson_id"], unique=False)

    op.create_table(
        "certificates",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("certificate_number", sa.String(length=64), nullable=False),
        _created_at("issued_at"),
        sa.UniqueConstraint("user_id", "course_id", name="uq_certificate_user_course"),
    )
    op.create_index("ix_certificates_certificate_number", "certificates", ["certificate_number"], unique=True)
    op.create_index("ix_certificates_user_id", "certificates", ["user_id"], unique=False)
    op.create_index("ix_certificates_course_id", "certificates", ["course_id"], unique=False)

    op.create_table(
        "groups",
        _uuid_pk(),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("leader_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        _created_at(),
    )
    op.create_index("ix_groups_name", "groups", ["name"], unique=True)
    op.create_index("ix_groups_leader_id", "groups", ["leader_id"], unique=False)

    op.create_table(
        "group_members",
        sa.Column("group_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("groups.id"), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), primary_key=True),
    )

    op.create_table(
        "course_access",
        sa.Column("course_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("courses.id"), primary_key=True),
        sa.Column("group_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("groups.id"), primary_key=True),
        sa.UniqueConstraint("course_id", "group_id", name="uq_course_access_group"),
    )

    op.create_table(
        "learning_events",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "course_viewed",
                "lesson_completed",
                "quiz_completed",
                "progress_reset",
                "certificate_issued",
                name="learningeventtype",
            ),
            nullable=False,
        ),
        sa.Column("ref_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("meta", sa.String(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_learning_events_user_id", "learning_events", ["user_id"], unique=False)
    op.create_index("ix_learning_events_type", "learning_events", ["type"], unique=False)
    op.create_index("ix_learning_events_ref_id", "learning_events", ["ref_id"], unique=False)
    op.create_index("ix_learning_events_user_created", "learning_events", ["user_id", "created_at"], unique=False)

    op.create_table(
        "security_audit_events",
        _uuid_pk(),
        sa.Column("actor_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("target_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("meta", sa.Text(), nullable=True),
        sa.Column("request_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=80), nullable=True),
        _created_at(),
    )
    op.create_index("ix_security_audit_events_actor_user_id", "security_audit_events", ["actor_user_id"], unique=False)
    op.create_index("ix_security_audit_events_created_at", "security_audit_events", ["created_at"], unique=False)
    op.create_index(
        "ix_security_audit_target_event", "security_audit_events", ["target_user_id", "event_type"], unique=False
    )


def downgrade() -> None:
    op.drop_table("security_audit_events")
    op.drop_table("learning_events")
    op.drop_table("course_access")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("certificates")
    op.drop_table("lesson_progress")
    op.drop_table("quiz_responses")
    op.drop_table("quiz_attempts")
    op.drop_table("quiz_answer_options")
    op.drop_table("quiz_questions")
    op.drop_table("quizzes")
    op.drop_table("lessons")
    op.drop_table("modules")
    op.drop_table("courses")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS learningeventtype")
    op.execute("DROP TYPE IF EXISTS userrole")
