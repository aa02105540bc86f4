"""Initial schema: users, projects, episodes, dialogues, voice-overs and the job queue.

Revision ID: 4f1c2a9d7e10
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "4f1c2a9d7e10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "users",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("username", sa.String(), nullable=False),
    sa.Column("email", sa.String(), nullable=True),
    sa.Column("role", sa.String(), nullable=False),
    sa.Column("firebase_uid", sa.String(), nullable=True),
    sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("username"),
  )
  op.create_index(op.f("ix_users_firebase_uid"), "users", ["firebase_uid"], unique=True)

  op.create_table(
    "projects",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("title", sa.String(), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("source_language", sa.String(), nullable=False),
    sa.Column("target_language", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("database_name", sa.String(), nullable=False),
    sa.Column("assigned_to", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'[]'::jsonb"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("database_name"),
  )

  op.create_table(
    "episodes",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("project_id", sa.String(), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("collection_name", sa.String(), nullable=False),
    sa.Column("video_path", sa.Text(), nullable=True),
    sa.Column("video_key", sa.Text(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("step", sa.Integer(), nullable=False),
    sa.Column("steps", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("error_detail", sa.Text(), nullable=True),
    sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("project_id", "name", name="ux_episodes_project_name"),
  )
  op.create_index(op.f("ix_episodes_project_id"), "episodes", ["project_id"], unique=False)
  op.create_index(op.f("ix_episodes_collection_name"), "episodes", ["collection_name"], unique=False)

  op.create_table(
    "dialogues",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("project_id", sa.String(), nullable=False),
    sa.Column("database_name", sa.String(), nullable=False),
    sa.Column("collection_name", sa.String(), nullable=False),
    sa.Column("dialogue_number", sa.String(), nullable=True),
    sa.Column("scene_number", sa.String(), nullable=True),
    sa.Column("index", sa.Integer(), nullable=False),
    sa.Column("subtitle_index", sa.Integer(), nullable=True),
    sa.Column("time_start", sa.String(), nullable=True),
    sa.Column("time_end", sa.String(), nullable=True),
    sa.Column("character_name", sa.String(), nullable=True),
    sa.Column("dialogue", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("revision_requested", sa.Boolean(), nullable=False),
    sa.Column("needs_rerecord", sa.Boolean(), nullable=False),
    sa.Column("director_notes", sa.Text(), nullable=True),
    sa.Column("voice_over_notes", sa.Text(), nullable=True),
    sa.Column("voice_id", sa.String(), nullable=True),
    sa.Column("recorded_audio_url", sa.Text(), nullable=True),
    sa.Column("voice_over_url", sa.Text(), nullable=True),
    sa.Column("voice_over_key", sa.Text(), nullable=True),
    sa.Column("ai_converted_voiceover_url", sa.Text(), nullable=True),
    sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("updated_by", sa.String(), nullable=True),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_dialogues_project_id"), "dialogues", ["project_id"], unique=False)
  op.create_index("ix_dialogues_namespace", "dialogues", ["database_name", "collection_name", "index"], unique=False)

  op.create_table(
    "voiceovers",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("key", sa.Text(), nullable=False),
    sa.Column("url", sa.Text(), nullable=False),
    sa.Column("username", sa.String(), nullable=False),
    sa.Column("dialogue_id", sa.String(), nullable=True),
    sa.Column("content_type", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("key"),
  )
  op.create_index(op.f("ix_voiceovers_username"), "voiceovers", ["username"], unique=False)
  op.create_index(op.f("ix_voiceovers_dialogue_id"), "voiceovers", ["dialogue_id"], unique=False)

  op.create_table(
    "queue_jobs",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("queue_name", sa.String(), nullable=False),
    sa.Column("name", sa.String(), nullable=False),
    sa.Column("data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("attempts_made", sa.Integer(), nullable=False),
    sa.Column("max_attempts", sa.Integer(), nullable=False),
    sa.Column("backoff_delay_ms", sa.Integer(), nullable=False),
    sa.Column("progress", sa.Integer(), nullable=False),
    sa.Column("available_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("locked_by", sa.String(), nullable=True),
    sa.Column("failed_reason", sa.Text(), nullable=True),
    sa.Column("return_value", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index("ix_queue_jobs_claim", "queue_jobs", ["queue_name", "status", "available_at"], unique=False)
  op.create_index("ix_queue_jobs_finished", "queue_jobs", ["queue_name", "status", "finished_at"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_queue_jobs_finished", table_name="queue_jobs")
  op.drop_index("ix_queue_jobs_claim", table_name="queue_jobs")
  op.drop_table("queue_jobs")
  op.drop_index(op.f("ix_voiceovers_dialogue_id"), table_name="voiceovers")
  op.drop_index(op.f("ix_voiceovers_username"), table_name="voiceovers")
  op.drop_table("voiceovers")
  op.drop_index("ix_dialogues_namespace", table_name="dialogues")
  op.drop_index(op.f("ix_dialogues_project_id"), table_name="dialogues")
  op.drop_table("dialogues")
  op.drop_index(op.f("ix_episodes_collection_name"), table_name="episodes")
  op.drop_index(op.f("ix_episodes_project_id"), table_name="episodes")
  op.drop_table("episodes")
  op.drop_table("projects")
  op.drop_index(op.f("ix_users_firebase_uid"), table_name="users")
  op.drop_table("users")
