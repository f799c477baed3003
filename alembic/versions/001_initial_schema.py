"""Initial schema: subjects, runs, scripts, scenes, media assets, jobs.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from reelforge.storage.models import GUID


revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "subjects",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", sa.String(length=128), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("original_price", sa.Float(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=True),
        sa.Column("benefits", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_subjects_organization_id", "subjects", ["organization_id"])

    op.create_table(
        "music_tracks",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_music_tracks_organization_id", "music_tracks", ["organization_id"])

    op.create_table(
        "production_runs",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("subject_id", GUID(), sa.ForeignKey("subjects.id"), nullable=True),
        sa.Column("organization_id", sa.String(length=128), nullable=True),
        sa.Column("stage", sa.String(length=32), nullable=False, server_default="script"),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("stage_progress", sa.JSON(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("cancel_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("lease_owner", sa.String(length=128), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_production_runs_status", "production_runs", ["status"])
    op.create_index("ix_production_runs_created_at", "production_runs", ["created_at"])
    op.create_index(
        "ix_production_runs_organization_id", "production_runs", ["organization_id"]
    )

    op.create_table(
        "scripts",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("run_id", GUID(), sa.ForeignKey("production_runs.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_selected", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("candidate_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_scripts_run_selected", "scripts", ["run_id", "is_selected"])

    op.create_table(
        "scenes",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("run_id", GUID(), sa.ForeignKey("production_runs.id"), nullable=False),
        sa.Column(
            "script_id", GUID(), sa.ForeignKey("scripts.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("scene_number", sa.Integer(), nullable=False),
        sa.Column("script_text", sa.Text(), nullable=False),
        sa.Column("visual_description", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("script_id", "scene_number", name="ux_scenes_script_number"),
    )
    op.create_index("ix_scenes_run_id", "scenes", ["run_id"])

    op.create_table(
        "media_assets",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("run_id", GUID(), sa.ForeignKey("production_runs.id"), nullable=False),
        sa.Column(
            "scene_id", GUID(), sa.ForeignKey("scenes.id", ondelete="CASCADE"), nullable=True
        ),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("url", sa.String(length=1024), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_media_assets_run_kind", "media_assets", ["run_id", "kind"])
    op.create_index("ix_media_assets_scene_id", "media_assets", ["scene_id"])

    op.create_table(
        "jobs",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("job_type", sa.String(length=80), nullable=False),
        sa.Column("idempotency_key", sa.String(length=160), nullable=True),
        sa.Column("run_id", GUID(), sa.ForeignKey("production_runs.id"), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("available_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("claimed_by", sa.String(length=128), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_jobs_status_available_at", "jobs", ["status", "available_at"])
    op.create_index("ix_jobs_run_id", "jobs", ["run_id"])
    op.create_index("ix_jobs_lease_expires_at", "jobs", ["lease_expires_at"])
    op.create_index(
        "ux_jobs_type_idempotency",
        "jobs",
        ["job_type", "idempotency_key"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_table("jobs")
    op.drop_table("media_assets")
    op.drop_table("scenes")
    op.drop_table("scripts")
    op.drop_table("production_runs")
    op.drop_table("music_tracks")
    op.drop_table("subjects")
