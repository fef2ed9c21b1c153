"""account security (mfa, e-mail confirmation, password reset) and knowledge base

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()"))


def upgrade() -> None:
    op.add_column("users", sa.Column("email", sa.String(length=320), nullable=True))
    op.add_column("users", sa.Column("email_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("true")))
    op.add_column("users", sa.Column("mfa_secret", sa.String(length=64), nullable=True))
    op.add_column("users", sa.Column("mfa_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")))
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "account_tokens",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "purpose",
            sa.Enum("email_confirmation", "password_reset", name="accounttokenpurpose"),
            nullable=False,
        ),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_account_tokens_user_id", "account_tokens", ["user_id"], unique=False)
    op.create_index("ix_account_tokens_purpose", "account_tokens", ["purpose"], unique=False)
    op.create_index("ix_account_tokens_token_hash", "account_tokens", ["token_hash"], unique=True)

    op.create_table(
        "faqs",
        _uuid_pk(),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("faqs.id"), nullable=True),
        sa.Column("is_section", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.String(length=5000), nullable=True),
        sa.Column("pdf_url", sa.String(length=1000), nullable=True),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _created_at("updated_at"),
    )
    op.create_index("ix_faqs_parent_id", "faqs", ["parent_id"], unique=False)
    op.create_index("ix_faqs_title", "faqs", ["title"], unique=False)

    op.create_table(
        "faq_section_access",
        sa.Column("section_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("faqs.id"), primary_key=True),
        sa.Column("group_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("groups.id"), primary_key=True),
        sa.UniqueConstraint("section_id", "group_id", name="uq_faq_section_access_group"),
    )

    op.create_table(
        "faq_notes",
        _uuid_pk(),
        sa.Column("faq_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("faqs.id"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("note", sa.String(length=5000), nullable=False),
        _created_at(),
        _created_at("updated_at"),
    )
    op.create_index("ix_faq_notes_faq_id", "faq_notes", ["faq_id"], unique=False)
    op.create_index("ix_faq_notes_user_id", "faq_notes", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_faq_notes_user_id", table_name="faq_notes")
    op.drop_index("ix_faq_notes_faq_id", table_name="faq_notes")
    op.drop_table("faq_notes")
    op.drop_table("faq_section_access")
    op.drop_index("ix_faqs_title", table_name="faqs")
    op.drop_index("ix_faqs_parent_id", table_name="faqs")
    op.drop_table("faqs")

    op.drop_index("ix_account_tokens_token_hash", table_name="account_tokens")
    op.drop_index("ix_account_tokens_purpose", table_name="account_tokens")
    op.drop_index("ix_account_tokens_user_id", table_name="account_tokens")
    op.drop_table("account_tokens")
    sa.Enum(name="accounttokenpurpose").drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_users_email", table_name="users")
    op.drop_column("users", "mfa_enabled")
    op.drop_column("users", "mfa_secret")
    op.drop_column("users", "email_confirmed")
    op.drop_column("users", "email")
