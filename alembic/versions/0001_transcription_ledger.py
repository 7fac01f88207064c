"""transcription ledger, chunk staging, enrichment tables

Revision ID: 0001_transcription_ledger
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_transcription_ledger"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


class VectorType(sa.types.UserDefinedType):
    """SQLAlchemy type for pgvector: vector(dim)."""

    cache_ok = True

    def __init__(self, dim: int):
        self.dim = int(dim)

    def get_col_spec(self, **kw) -> str:
        return f"vector({self.dim})"


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "transcription_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("project", sa.String(length=128), nullable=False, server_default="general"),
        sa.Column("source", sa.String(length=32), nullable=False),
        sa.Column("source_ref", sa.Text(), nullable=True),
        sa.Column("filename", sa.String(length=512), nullable=False),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(length=128), nullable=True),
        sa.Column("content_sha256", sa.String(length=64), nullable=True),
        sa.Column("estimated_duration_seconds", sa.Float(), nullable=True),
        sa.Column("backend", sa.String(length=64), nullable=False),
        sa.Column("backend_job_id", sa.String(length=128), nullable=True),
        sa.Column("staged_ref", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="starting"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_of", sa.String(length=64), nullable=True),
        sa.Column("audio_duration_seconds", sa.Float(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("speaker_segments_json", sa.Text(), nullable=True),
        sa.Column("tags_json", sa.Text(), nullable=True),
        sa.Column("action_items_json", sa.Text(), nullable=True),
        sa.Column("topics_json", sa.Text(), nullable=True),
        sa.Column("sentiment", sa.String(length=32), nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("importance_score", sa.Float(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("job_id"),
    )
    op.create_index("idx_transcription_jobs_owner_created", "transcription_jobs", ["owner", "created_at"])
    op.create_index("idx_transcription_jobs_status", "transcription_jobs", ["status"])

    op.create_table(
        "audio_chunks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "job_id",
            sa.String(length=64),
            sa.ForeignKey("transcription_jobs.job_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("etag", sa.String(length=128), nullable=True),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("job_id", "chunk_index", name="uq_audio_chunks_job_idx"),
    )
    op.create_index("ix_audio_chunks_id", "audio_chunks", ["id"])
    op.create_index("idx_audio_chunks_job", "audio_chunks", ["job_id"])

    op.create_table(
        "backend_results",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("backend_job_id", sa.String(length=128), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("segments_json", sa.Text(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("backend_job_id"),
    )
    op.create_index("ix_backend_results_id", "backend_results", ["id"])

    op.create_table(
        "drive_credentials",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("owner"),
    )
    op.create_index("ix_drive_credentials_id", "drive_credentials", ["id"])

    op.create_table(
        "knowledge_documents",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("owner", sa.String(length=128), nullable=False),
        sa.Column("source_type", sa.String(length=64), nullable=False, server_default="audio_transcription"),
        sa.Column("source_id", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("importance", sa.Float(), nullable=True),
        sa.Column("tags_json", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=False, server_default="unknown"),
        sa.Column("embedding", VectorType(384), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_knowledge_documents_id", "knowledge_documents", ["id"])
    op.create_index("ix_knowledge_documents_owner", "knowledge_documents", ["owner"])
    op.create_index("idx_knowledge_documents_source", "knowledge_documents", ["source_type", "source_id"])

    op.create_table(
        "transcript_passages",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("job_id", sa.String(length=64), nullable=False),
        sa.Column("idx", sa.Integer(), nullable=False),
        sa.Column("start_ms", sa.BigInteger(), nullable=False),
        sa.Column("end_ms", sa.BigInteger(), nullable=False),
        sa.Column("speaker", sa.String(length=32), nullable=True),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False, server_default="unknown"),
        sa.Column("embedding", VectorType(384), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("job_id", "idx", "model", name="uq_transcript_passages_job_idx_model"),
    )
    op.create_index("ix_transcript_passages_id", "transcript_passages", ["id"])
    op.create_index("ix_transcript_passages_job_id", "transcript_passages", ["job_id"])
    op.create_index("idx_transcript_passages_time", "transcript_passages", ["job_id", "start_ms", "end_ms"])


def downgrade() -> None:
    op.drop_table("transcript_passages")
    op.drop_table("knowledge_documents")
    op.drop_table("drive_credentials")
    op.drop_table("backend_results")
    op.drop_table("audio_chunks")
    op.drop_table("transcription_jobs")
    # vector extension is left installed
