"""Job queue schema: jobs, in-flight handles, dispatch responses, worker slots

Revision ID: 20261016_01
Revises: None
Create Date: 2026-10-16
"""
# pylint: disable=no-member,invalid-name,wrong-import-order

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261016_01"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""

    op.create_table(
        "job",
        sa.Column("job_id", sa.BigInteger(), sa.Identity(always=True), primary_key=True),
        sa.Column("method", sa.Text(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("target_path", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'queued'")),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("retry_limit", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("result_body", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("method in ('GET', 'POST', 'DELETE')", name="ck_job_method"),
        sa.CheckConstraint(
            "status in ('queued', 'dispatching', 'in_flight', 'complete', 'failed')",
            name="ck_job_status",
        ),
        sa.CheckConstraint("retry_limit >= 1", name="ck_job_retry_limit_positive"),
        sa.CheckConstraint("retry_count >= 0 AND retry_count <= retry_limit", name="ck_job_retry_count_bounds"),
        sa.CheckConstraint("jsonb_typeof(payload) = 'object'", name="ck_job_payload_object"),
        sa.CheckConstraint("length(btrim(target_path)) > 0", name="ck_job_target_path_not_blank"),
    )
    op.create_index(
        "ix_job_queued",
        "job",
        ["job_id"],
        postgresql_where=sa.text("status = 'queued'"),
    )
    op.create_index(
        "ix_job_failed_retryable",
        "job",
        ["job_id"],
        postgresql_where=sa.text("status = 'failed' AND retry_count < retry_limit"),
    )
    op.create_index(
        "ix_job_active_updated_at_utc",
        "job",
        ["updated_at_utc"],
        postgresql_where=sa.text("status in ('dispatching', 'in_flight')"),
    )
    op.create_index("ix_job_status", "job", ["status"])

    op.create_table(
        "in_flight_handle",
        sa.Column("handle_id", sa.Text(), primary_key=True),
        sa.Column("job_id", sa.BigInteger(), nullable=False),
        sa.Column("claimed_by", sa.Text(), nullable=True),
        sa.Column("claimed_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.ForeignKeyConstraint(["job_id"], ["job.job_id"], name="fk_in_flight_handle_job", ondelete="CASCADE"),
        sa.UniqueConstraint("job_id", name="uq_in_flight_handle_job_id"),
        sa.CheckConstraint(
            "(claimed_by IS NULL) = (claimed_at_utc IS NULL)",
            name="ck_in_flight_handle_claim_pair",
        ),
    )
    op.create_index("ix_in_flight_handle_created_at_utc", "in_flight_handle", ["created_at_utc", "handle_id"])
    op.create_index("ix_in_flight_handle_claimed_by", "in_flight_handle", ["claimed_by"])

    op.create_table(
        "dispatch_response",
        sa.Column("handle_id", sa.Text(), primary_key=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "(status_code IS NULL) <> (error_message IS NULL)",
            name="ck_dispatch_response_outcome",
        ),
    )
    op.create_index("ix_dispatch_response_created_at_utc", "dispatch_response", ["created_at_utc"])

    op.create_table(
        "worker_slot",
        sa.Column("slot_id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("leased", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("leased_by", sa.Text(), nullable=True),
        sa.Column("leased_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("slot_id >= 1", name="ck_worker_slot_id_positive"),
        sa.CheckConstraint(
            "(leased AND leased_by IS NOT NULL AND leased_at_utc IS NOT NULL) "
            "OR (NOT leased AND leased_by IS NULL AND leased_at_utc IS NULL)",
            name="ck_worker_slot_lease_fields",
        ),
    )


def downgrade() -> None:
    """Downgrade schema."""

    op.drop_table("worker_slot")
    op.drop_index("ix_dispatch_response_created_at_utc", table_name="dispatch_response")
    op.drop_table("dispatch_response")
    op.drop_index("ix_in_flight_handle_claimed_by", table_name="in_flight_handle")
    op.drop_index("ix_in_flight_handle_created_at_utc", table_name="in_flight_handle")
    op.drop_table("in_flight_handle")
    op.drop_index("ix_job_status", table_name="job")
    op.drop_index("ix_job_active_updated_at_utc", table_name="job")
    op.drop_index("ix_job_failed_retryable", table_name="job")
    op.drop_index("ix_job_queued", table_name="job")
    op.drop_table("job")
