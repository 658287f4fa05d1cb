"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    from alembic import op as _op
    bind = _op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "services" in existing_tables:
        return

    op.create_table(
        "services",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("is_consumer", sa.Boolean, default=False),
        sa.Column("is_provider", sa.Boolean, default=False),
        sa.Column("spec_type", sa.String(20), nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("git_repository_url", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "service_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("service_id", sa.String(36), sa.ForeignKey("services.id"), nullable=False),
        sa.Column("service_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("version", sa.String(100), nullable=False),
        sa.Column("git_sha", sa.String(40), nullable=True),
        sa.Column("spec", sa.JSON, nullable=True),
        sa.Column("package_json", sa.JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.UniqueConstraint("service_name", "role", "version", name="uq_service_role_version"),
    )
    op.create_index("ix_service_versions_service_name", "service_versions", ["service_name"])

    op.create_table(
        "contracts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("consumer_name", sa.String(255), nullable=False),
        sa.Column("consumer_version", sa.String(100), nullable=False),
        sa.Column("provider_name", sa.String(255), nullable=False),
        sa.Column("provider_version", sa.String(100), nullable=True),
        sa.Column("spec_type", sa.String(20), nullable=True),
        sa.Column("interaction_count", sa.Integer, nullable=False, default=0),
        sa.Column("status", sa.String(20), nullable=True),
        sa.Column("first_seen", sa.DateTime(timezone=True)),
        sa.Column("last_seen", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("consumer_name", "provider_name", name="uq_contract_pair"),
    )
    op.create_index("ix_contracts_consumer_name", "contracts", ["consumer_name"])
    op.create_index("ix_contracts_provider_name", "contracts", ["provider_name"])

    op.create_table(
        "interactions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("provider", sa.String(255), nullable=False),
        sa.Column("provider_version", sa.String(100), nullable=True),
        sa.Column("operation", sa.String(255), nullable=False),
        sa.Column("consumer", sa.String(255), nullable=False),
        sa.Column("consumer_version", sa.String(100), nullable=False),
        sa.Column("consumer_git_sha", sa.String(40), nullable=True),
        sa.Column("environment", sa.String(100), nullable=False),
        sa.Column("request", sa.JSON, nullable=False),
        sa.Column("response", sa.JSON, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True)),
        sa.Column("duration_ms", sa.Integer, nullable=True),
        sa.Column("contract_id", sa.String(36), sa.ForeignKey("contracts.id"), nullable=True),
    )
    op.create_index(
        "ix_interactions_pair_version", "interactions", ["consumer", "consumer_version", "provider"]
    )
    op.create_index("ix_interactions_timestamp", "interactions", ["timestamp"])
    op.create_index("ix_interactions_contract_id", "interactions", ["contract_id"])

    op.create_table(
        "verification_tasks",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("contract_id", sa.String(36), sa.ForeignKey("contracts.id"), nullable=True),
        sa.Column("provider", sa.String(255), nullable=False),
        sa.Column("provider_version", sa.String(100), nullable=False),
        sa.Column("consumer", sa.String(255), nullable=False),
        sa.Column("consumer_version", sa.String(100), nullable=False),
        sa.Column("interactions", sa.JSON, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_verification_tasks_provider", "verification_tasks", ["provider"])
    op.create_index("ix_verification_tasks_consumer", "verification_tasks", ["consumer"])
    op.create_index(
        "uq_open_verification_task",
        "verification_tasks",
        ["consumer", "consumer_version", "provider", "provider_version"],
        unique=True,
        sqlite_where=sa.text("closed_at IS NULL"),
        postgresql_where=sa.text("closed_at IS NULL"),
    )

    op.create_table(
        "verification_results",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("task_id", sa.String(36), sa.ForeignKey("verification_tasks.id"), nullable=False),
        sa.Column("provider", sa.String(255), nullable=False),
        sa.Column("provider_version", sa.String(100), nullable=False),
        sa.Column("provider_git_sha", sa.String(40), nullable=True),
        sa.Column("consumer", sa.String(255), nullable=False),
        sa.Column("consumer_version", sa.String(100), nullable=False),
        sa.Column("spec_type", sa.String(20), nullable=True),
        sa.Column("outcomes", sa.JSON, nullable=False),
        sa.Column("passed", sa.Integer, nullable=False),
        sa.Column("failed", sa.Integer, nullable=False),
        sa.Column("total", sa.Integer, nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_verification_results_tuple",
        "verification_results",
        ["consumer", "consumer_version", "provider", "provider_version"],
    )
    op.create_index("ix_verification_results_submitted_at", "verification_results", ["submitted_at"])

    op.create_table(
        "fixtures",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("service", sa.String(255), nullable=False),
        sa.Column("operation", sa.String(255), nullable=False),
        sa.Column("service_versions", sa.JSON, nullable=False),
        sa.Column("data", sa.JSON, nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer, default=1),
        sa.Column("status", sa.String(20), default="draft"),
        sa.Column("created_from", sa.JSON, nullable=False),
        sa.Column("approved_by", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_fixtures_lookup", "fixtures", ["service", "operation", "status"])

    op.create_table(
        "fixture_audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("fixture_id", sa.String(36), sa.ForeignKey("fixtures.id"), nullable=False),
        sa.Column("old_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=False),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("changed_at", sa.DateTime(timezone=True)),
        sa.Column("detail", sa.Text, nullable=True),
    )
    op.create_index("ix_fixture_audit_log_fixture_id", "fixture_audit_log", ["fixture_id"])

    op.create_table(
        "deployment_states",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("service", sa.String(255), nullable=False),
        sa.Column("version", sa.String(100), nullable=False),
        sa.Column("environment", sa.String(100), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, default=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("deployed_at", sa.DateTime(timezone=True)),
        sa.Column("deployed_by", sa.String(255), nullable=False),
        sa.Column("git_sha", sa.String(40), nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
    )
    op.create_index("ix_deployment_states_service_env", "deployment_states", ["service", "environment"])
    op.create_index("ix_deployment_states_deployed_at", "deployment_states", ["deployed_at"])
    op.create_index(
        "uq_active_deployment",
        "deployment_states",
        ["service", "environment"],
        unique=True,
        sqlite_where=sa.text("active"),
        postgresql_where=sa.text("active"),
    )

    op.create_table(
        "deployment_slots",
        sa.Column("service", sa.String(255), primary_key=True),
        sa.Column("environment", sa.String(100), primary_key=True),
        sa.Column("active_deployment_id", sa.String(36), nullable=True),
        sa.Column("revision", sa.Integer, nullable=False, default=0),
    )


def downgrade() -> None:
    op.drop_table("deployment_slots")
    op.drop_table("deployment_states")
    op.drop_table("fixture_audit_log")
    op.drop_table("fixtures")
    op.drop_table("verification_results")
    op.drop_table("verification_tasks")
    op.drop_table("interactions")
    op.drop_table("contracts")
    op.drop_table("service_versions")
    op.drop_table("services")
