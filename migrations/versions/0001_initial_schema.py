"""initial bdGenAI schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=False),
        nullable=False,
        server_default=sa.func.current_timestamp(),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=False),
        nullable=False,
        server_default=sa.func.current_timestamp(),
    )


def _user_fk(nullable: bool = False) -> sa.Column:
    return sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=nullable)


def upgrade() -> None:
    # --- identity / rbac ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("image", sa.String(length=1024), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("email_verified", sa.DateTime(timezone=False), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False, unique=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("provider", sa.String(length=64), nullable=False),
        sa.Column("provider_account_id", sa.String(length=255), nullable=False),
        _created_at(),
        sa.UniqueConstraint("provider", "provider_account_id", name="uq_accounts_provider_account"),
    )
    op.create_index("idx_accounts_user", "accounts", ["user_id"])
    op.create_table(
        "auth_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("token", sa.String(length=128), nullable=False),
        sa.Column("purpose", sa.String(length=32), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        _created_at(),
        sa.UniqueConstraint("email", "token", name="uq_auth_tokens_email_token"),
    )
    op.create_index("idx_auth_tokens_token", "auth_tokens", ["token"])
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at(),
        sa.Column("request_id", sa.String(length=64), nullable=True),
        sa.Column("client_ip", sa.String(length=64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(length=320), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=True),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("reason", sa.String(length=512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )
    op.create_index("idx_audit_events_entity", "audit_events", ["entity_type", "entity_id"])

    # --- courses ---
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False, unique=True),
        _created_at(),
    )
    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=True),
        sa.Column("what_you_will_learn", sa.JSON(), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_courses_user", "courses", ["user_id"])
    op.create_index("idx_courses_published", "courses", ["is_published"])
    op.create_index("idx_courses_category", "courses", ["category_id"])
    op.create_table(
        "chapters",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("learning_outcomes", sa.Text(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_free", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_chapters_course_position", "chapters", ["course_id", "position"])
    op.create_table(
        "sections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("chapter_id", sa.Integer(), sa.ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("video_url", sa.String(length=1024), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_preview", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_sections_chapter_position", "sections", ["chapter_id", "position"])
    op.create_table(
        "attachments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        _created_at(),
    )
    op.create_table(
        "course_reviews",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("course_id", "user_id", name="uq_course_reviews_course_user"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_course_reviews_rating"),
    )

    # --- checkout ---
    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
    )
    op.create_index("idx_enrollments_course", "enrollments", ["course_id"])
    op.create_table(
        "stripe_customers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=False, unique=True),
        _created_at(),
    )
    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("course_id", sa.Integer(), sa.ForeignKey("courses.id", ondelete="CASCADE"), nullable=False),
        sa.Column("stripe_session_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        _created_at(),
    )
    op.create_index("idx_purchases_user_course", "purchases", ["user_id", "course_id"])

    # --- posts / discussion ---
    op.create_table(
        "posts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=1024), nullable=True),
        sa.Column("category", sa.String(length=128), nullable=True),
        sa.Column("published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_posts_user", "posts", ["user_id"])
    op.create_index("idx_posts_published", "posts", ["published"])
    op.create_table(
        "comments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("content", sa.Text(), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_comments_post_created", "comments", ["post_id", "created_at"])
    op.create_table(
        "replies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("comment_id", sa.Integer(), sa.ForeignKey("comments.id", ondelete="CASCADE"), nullable=False),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("parent_reply_id", sa.Integer(), sa.ForeignKey("replies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("path", sa.String(length=1024), nullable=False),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_replies_comment", "replies", ["comment_id"])
    op.create_index("idx_replies_parent", "replies", ["parent_reply_id"])
    op.create_table(
        "reactions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("post_id", sa.Integer(), sa.ForeignKey("posts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("comment_id", sa.Integer(), sa.ForeignKey("comments.id", ondelete="CASCADE"), nullable=True),
        sa.Column("reply_id", sa.Integer(), sa.ForeignKey("replies.id", ondelete="CASCADE"), nullable=True),
        sa.Column("type", sa.String(length=16), nullable=False),
        _created_at(),
    )
    op.create_index("idx_reactions_comment", "reactions", ["comment_id"])
    op.create_index("idx_reactions_reply", "reactions", ["reply_id"])
    op.create_index("idx_reactions_user", "reactions", ["user_id"])

    # --- profile ---
    op.create_table(
        "profile_links",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("platform", sa.String(length=64), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_profile_links_user", "profile_links", ["user_id"])
    op.create_table(
        "social_media_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("platform_user_id", sa.String(length=255), nullable=True),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("profile_image_url", sa.String(length=1024), nullable=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("followers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("following", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_sync_at", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("user_id", "platform", name="uq_social_accounts_user_platform"),
    )
    op.create_index("idx_social_accounts_user", "social_media_accounts", ["user_id"])
    op.create_table(
        "ideas",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="draft"),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_ideas_user", "ideas", ["user_id"])
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("cost", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("billing_cycle", sa.String(length=16), nullable=False, server_default="MONTHLY"),
        sa.Column("renewal_date", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
        sa.CheckConstraint("billing_cycle IN ('MONTHLY', 'YEARLY')", name="ck_subscriptions_cycle"),
    )
    op.create_index("idx_subscriptions_user", "subscriptions", ["user_id"])

    # --- calendar / tasks / activities ---
    op.create_table(
        "calendar_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("is_all_day", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("notifications", sa.JSON(), nullable=True),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_calendar_events_user_start", "calendar_events", ["user_id", "start_date"])
    op.create_table(
        "tasks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=False), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default="medium"),
        sa.Column("category", sa.String(length=64), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("has_reminder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("reminder_type", sa.String(length=16), nullable=True),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_tasks_priority"),
    )
    op.create_index("idx_tasks_user_due", "tasks", ["user_id", "due_date"])
    op.create_index("idx_tasks_reminder", "tasks", ["has_reminder", "reminder_sent", "reminder_date"])
    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _user_fk(),
        sa.Column("type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="planned"),
        sa.Column("priority", sa.String(length=16), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint("progress >= 0 AND progress <= 100", name="ck_activities_progress"),
    )
    op.create_index("idx_activities_user_created", "activities", ["user_id", "created_at"])

    # --- exams ---
    op.create_table(
        "exams",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("section_id", sa.Integer(), sa.ForeignKey("sections.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("time_limit", sa.Integer(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("passing_score", sa.Float(), nullable=False, server_default="70"),
        sa.Column("shuffle_questions", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("show_results", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("start_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=False), nullable=True),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        _updated_at(),
    )
    op.create_index("idx_exams_section", "exams", ["section_id"])
    op.create_table(
        "exam_questions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("exam_id", sa.Integer(), sa.ForeignKey("exams.id", ondelete="CASCADE"), nullable=False),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(length=32), nullable=False),
        sa.Column("options", sa.JSON(), nullable=True),
        sa.Column("correct_answer", sa.JSON(), nullable=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("explanation", sa.Text(), nullable=True),
    )
    op.create_index("idx_exam_questions_exam_order", "exam_questions", ["exam_id", "order"])
    op.create_table(
        "exam_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("exam_id", sa.Integer(), sa.ForeignKey("exams.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("attempt_number", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="IN_PROGRESS"),
        sa.Column("started_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("submitted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.Column("total_questions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("correct_answers", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("earned_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("score_percentage", sa.Float(), nullable=True),
        sa.Column("is_passed", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("exam_id", "user_id", "attempt_number", name="uq_exam_attempts_number"),
        sa.CheckConstraint("status IN ('IN_PROGRESS', 'SUBMITTED', 'GRADED')", name="ck_exam_attempts_status"),
    )
    op.create_index("idx_exam_attempts_user", "exam_attempts", ["user_id", "exam_id"])
    op.create_table(
        "exam_answers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("attempt_id", sa.Integer(), sa.ForeignKey("exam_attempts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("question_id", sa.Integer(), sa.ForeignKey("exam_questions.id", ondelete="CASCADE"), nullable=False),
        sa.Column("answer", sa.JSON(), nullable=True),
        sa.Column("is_correct", sa.Boolean(), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_exam_answers_question"),
    )


def downgrade() -> None:
    # Reverse dependency order.
    for table in (
        "exam_answers",
        "exam_attempts",
        "exam_questions",
        "exams",
        "activities",
        "tasks",
        "calendar_events",
        "subscriptions",
        "ideas",
        "social_media_accounts",
        "profile_links",
        "reactions",
        "replies",
        "comments",
        "posts",
        "purchases",
        "stripe_customers",
        "enrollments",
        "course_reviews",
        "attachments",
        "sections",
        "chapters",
        "courses",
        "categories",
        "audit_events",
        "auth_tokens",
        "accounts",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
