"""create story map schema

Revision ID: 3a7c1e9d2b40
Revises:
Create Date: 2026-10-17 12:00:00

Touched tables:
- story_maps, journeys, steps, releases, stories, story_links, tags, personas,
  story_tags, story_personas, comments, attachments

Operational notes:
- releases_story_map_id_unassigned_key is a partial unique index, at most one
  Unassigned release per story map
- stories.release_id has no ON DELETE action, releases are only deleted after
  their stories were moved to the Unassigned release
"""

from alembic import op
import sqlalchemy as sa

revision = "3a7c1e9d2b40"
down_revision = None
branch_labels = None
depends_on = None


STORY_STATUSES = "'NOT_READY', 'READY', 'IN_PROGRESS', 'DONE', 'BLOCKED'"
LINK_TYPES = "'LINKED_TO', 'BLOCKS', 'IS_BLOCKED_BY', 'DUPLICATES', 'IS_DUPLICATED_BY'"


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("updated_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "story_maps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_story_maps_created_by", "story_maps", ["created_by"])

    op.create_table(
        "journeys",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_map_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("color", sa.Text(), nullable=False, server_default="#8B5CF6"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["story_map_id"], ["story_maps.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_map_id", "name", name="uq_journeys_story_map_name"),
    )
    op.create_index("ix_journeys_story_map_sort", "journeys", ["story_map_id", "sort_order"])

    op.create_table(
        "steps",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("journey_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["journey_id"], ["journeys.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_steps_journey_sort", "steps", ["journey_id", "sort_order"])

    op.create_table(
        "releases",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_map_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("shipped", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_unassigned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["story_map_id"], ["story_maps.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_releases_story_map_sort", "releases", ["story_map_id", "sort_order"])
    op.create_index(
        "releases_story_map_id_unassigned_key",
        "releases",
        ["story_map_id"],
        unique=True,
        postgresql_where=sa.text("is_unassigned = true"),
        sqlite_where=sa.text("is_unassigned = 1"),
    )

    op.create_table(
        "stories",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("step_id", sa.Uuid(), nullable=False),
        sa.Column("release_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.Text(), nullable=False, server_default="NOT_READY"),
        sa.Column("size", sa.Integer(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("label_id", sa.Text(), nullable=True),
        sa.Column("label_name", sa.Text(), nullable=False, server_default="Story"),
        sa.Column("label_color", sa.Text(), nullable=False, server_default="#3B82F6"),
        *_audit_columns(),
        sa.CheckConstraint(f"status in ({STORY_STATUSES})", name="ck_stories_status"),
        sa.ForeignKeyConstraint(["step_id"], ["steps.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_stories_cell_sort", "stories", ["step_id", "release_id", "sort_order"])

    op.create_table(
        "story_links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("source_story_id", sa.Uuid(), nullable=False),
        sa.Column("target_story_id", sa.Uuid(), nullable=False),
        sa.Column("link_type", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(f"link_type in ({LINK_TYPES})", name="ck_story_links_type"),
        sa.CheckConstraint("source_story_id <> target_story_id", name="ck_story_links_not_self"),
        sa.ForeignKeyConstraint(["source_story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "source_story_id", "target_story_id", "link_type", name="uq_story_links_source_target_type"
        ),
    )

    op.create_table(
        "tags",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_map_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("color", sa.Text(), nullable=False, server_default="#8B5CF6"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_map_id"], ["story_maps.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_map_id", "name", name="uq_tags_story_map_name"),
    )

    op.create_table(
        "personas",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_map_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_map_id"], ["story_maps.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("story_map_id", "name", name="uq_personas_story_map_name"),
    )

    op.create_table(
        "story_tags",
        sa.Column("story_id", sa.Uuid(), nullable=False),
        sa.Column("tag_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("story_id", "tag_id"),
    )

    op.create_table(
        "story_personas",
        sa.Column("story_id", sa.Uuid(), nullable=False),
        sa.Column("persona_id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["persona_id"], ["personas.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("story_id", "persona_id"),
    )

    op.create_table(
        "comments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_id", sa.Uuid(), nullable=True),
        sa.Column("release_id", sa.Uuid(), nullable=True),
        sa.Column("author_id", sa.Uuid(), nullable=False),
        sa.Column("author", sa.Text(), nullable=False),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["release_id"], ["releases.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comments_story_id", "comments", ["story_id"])

    op.create_table(
        "attachments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("story_id", sa.Uuid(), nullable=False),
        sa.Column("file_name", sa.Text(), nullable=False),
        sa.Column("file_url", sa.Text(), nullable=False),
        sa.Column("file_type", sa.Text(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["story_id"], ["stories.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_attachments_story_id", "attachments", ["story_id"])


def downgrade() -> None:
    op.drop_index("ix_attachments_story_id", table_name="attachments")
    op.drop_table("attachments")
    op.drop_index("ix_comments_story_id", table_name="comments")
    op.drop_table("comments")
    op.drop_table("story_personas")
    op.drop_table("story_tags")
    op.drop_table("personas")
    op.drop_table("tags")
    op.drop_table("story_links")
    op.drop_index("ix_stories_cell_sort", table_name="stories")
    op.drop_table("stories")
    op.drop_index("releases_story_map_id_unassigned_key", table_name="releases")
    op.drop_index("ix_releases_story_map_sort", table_name="releases")
    op.drop_table("releases")
    op.drop_index("ix_steps_journey_sort", table_name="steps")
    op.drop_table("steps")
    op.drop_index("ix_journeys_story_map_sort", table_name="journeys")
    op.drop_table("journeys")
    op.drop_index("ix_story_maps_created_by", table_name="story_maps")
    op.drop_table("story_maps")
