"""create step delivery tables

Revision ID: a1f3c9d2e4b5
Revises:
Create Date: 2026-10-01

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "a1f3c9d2e4b5"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def _deleted_at() -> sa.Column:
    return sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True)


def upgrade() -> None:
    """Create accounts, friends, scenarios, invites, enrollments and attempts."""
    op.create_table(
        "credentials",
        _id(),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("encrypted_data", sa.LargeBinary(), nullable=False),
        sa.Column("created_by_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
    )
    op.create_index("ix_credentials_type", "credentials", ["type"])

    op.create_table(
        "accounts",
        _id(),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("line_bot_id", sa.String(length=64), nullable=True),
        sa.Column("credential_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
        sa.ForeignKeyConstraint(
            ["credential_id"], ["credentials.id"], ondelete="SET NULL"
        ),
    )

    op.create_table(
        "friends",
        _id(),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=256), nullable=True),
        sa.Column("picture_url", sa.String(length=1024), nullable=True),
        sa.Column("short_uid", sa.String(length=16), nullable=False),
        sa.Column(
            "is_following", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("followed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unfollowed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        _deleted_at(),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "account_id", "line_user_id", name="uq_friends_account_line_user"
        ),
        sa.UniqueConstraint(
            "account_id", "short_uid", name="uq_friends_account_short_uid"
        ),
    )
    op.create_index("ix_friends_account_id", "friends", ["account_id"])

    op.create_table(
        "scenarios",
        _id(),
        sa.Column("account_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "prevent_auto_exit",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "prevent_re_registration",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        _deleted_at(),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_scenarios_account_id", "scenarios", ["account_id"])

    op.create_table(
        "scenario_steps",
        _id(),
        sa.Column("scenario_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=256), nullable=True),
        sa.Column(
            "delay_seconds", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "transition_scenario_id", postgresql.UUID(as_uuid=True), nullable=True
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["scenario_id"], ["scenarios.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["transition_scenario_id"], ["scenarios.id"], ondelete="SET NULL"
        ),
        sa.UniqueConstraint("scenario_id", "step_order", name="uq_scenario_steps_order"),
    )
    op.create_index("ix_scenario_steps_scenario_id", "scenario_steps", ["scenario_id"])

    op.create_table(
        "step_messages",
        _id(),
        sa.Column("step_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("message_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("message_type", sa.String(length=16), nullable=False),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("media_url", sa.String(length=1024), nullable=True),
        sa.Column("flex_content", postgresql.JSONB(), nullable=True),
        sa.Column("alt_text", sa.String(length=400), nullable=True),
        sa.ForeignKeyConstraint(["step_id"], ["scenario_steps.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_step_messages_step_id", "step_messages", ["step_id"])

    op.create_table(
        "invite_codes",
        _id(),
        sa.Column("scenario_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_usage", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["scenario_id"], ["scenarios.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_invite_codes_code", "invite_codes", ["code"], unique=True)
    op.create_index("ix_invite_codes_scenario_id", "invite_codes", ["scenario_id"])

    op.create_table(
        "invite_clicks",
        _id(),
        sa.Column("invite_code_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ip", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("referer", sa.String(length=1024), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(
            ["invite_code_id"], ["invite_codes.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_invite_clicks_invite_code_id", "invite_clicks", ["invite_code_id"]
    )

    op.create_table(
        "enrollments",
        _id(),
        sa.Column("friend_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scenario_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("invite_code", sa.String(length=32), nullable=True),
        sa.Column(
            "enrolled_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column("next_step_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("exit_reason", sa.String(length=16), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["friend_id"], ["friends.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["scenario_id"], ["scenarios.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_enrollments_friend_id", "enrollments", ["friend_id"])
    op.create_index("ix_enrollments_scenario_id", "enrollments", ["scenario_id"])
    op.create_index("ix_enrollments_status", "enrollments", ["status"])
    # at most one active enrollment per (friend, scenario)
    op.create_index(
        "uq_enrollments_active_friend_scenario",
        "enrollments",
        ["friend_id", "scenario_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "delivery_attempts",
        _id(),
        sa.Column("enrollment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("step_order", sa.Integer(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome", sa.String(length=16), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["step_id"], ["scenario_steps.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_delivery_attempts_enrollment_id", "delivery_attempts", ["enrollment_id"]
    )
    op.create_index(
        "ix_delivery_attempts_outcome_due", "delivery_attempts", ["outcome", "due_at"]
    )
    op.create_index(
        "uq_delivery_attempts_enrollment_step",
        "delivery_attempts",
        ["enrollment_id", "step_id"],
        unique=True,
        postgresql_where=sa.text("outcome != 'skipped'"),
    )

    op.create_table(
        "enrollment_events",
        _id(),
        sa.Column("enrollment_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("friend_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("scenario_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("reason", sa.String(length=32), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=True),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["enrollment_id"], ["enrollments.id"], ondelete="CASCADE"
        ),
    )
    op.create_index(
        "ix_enrollment_events_enrollment_id", "enrollment_events", ["enrollment_id"]
    )
    op.create_index("ix_enrollment_events_friend_id", "enrollment_events", ["friend_id"])
    op.create_index(
        "ix_enrollment_events_scenario_created",
        "enrollment_events",
        ["scenario_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("enrollment_events")
    op.drop_table("delivery_attempts")
    op.drop_table("enrollments")
    op.drop_table("invite_clicks")
    op.drop_table("invite_codes")
    op.drop_table("step_messages")
    op.drop_table("scenario_steps")
    op.drop_table("scenarios")
    op.drop_table("friends")
    op.drop_table("accounts")
    op.drop_table("credentials")
