"""initial casetrack schema

Revision ID: 0001_initial
Revises:
Create Date: 2024-01-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


class GUID(sa.TypeDecorator):
    impl = sa.CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            from sqlalchemy.dialects.postgresql import UUID

            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(sa.CHAR(36))


def _flag(name: str, default: bool):
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.true() if default else sa.false())


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "branches",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=20), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "areas",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, unique=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_areas_organization_id", "areas", ["organization_id"])
    op.create_table(
        "area_branches",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("area_id", GUID(), sa.ForeignKey("areas.id"), nullable=False),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), nullable=False),
        _flag("is_primary", False),
        sa.UniqueConstraint("area_id", "branch_id", name="uq_area_branches"),
    )
    op.create_index("ix_area_branches_area_id", "area_branches", ["area_id"])
    op.create_index("ix_area_branches_branch_id", "area_branches", ["branch_id"])
    op.create_table(
        "products",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("tracking_cycle", sa.String(length=20), nullable=False, server_default="monthly"),
    )
    op.create_index("ix_products_organization_id", "products", ["organization_id"])
    op.create_table(
        "clients",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("client_code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("pension_number", sa.String(length=100), nullable=True),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), nullable=True),
        sa.Column("product_id", GUID(), sa.ForeignKey("products.id"), nullable=True),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_clients_branch_id", "clients", ["branch_id"])
    op.create_index("ix_clients_product_id", "clients", ["product_id"])
    op.create_table(
        "users",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_table(
        "permissions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=100), nullable=False, unique=True),
        sa.Column("resource", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
    )
    op.create_table(
        "user_permissions",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("permission_id", GUID(), sa.ForeignKey("permissions.id"), nullable=False),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("scope", sa.String(length=20), nullable=False, server_default="self"),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "permission_id", "organization_id", name="uq_user_permissions"),
    )
    op.create_index("ix_user_permissions_user_id", "user_permissions", ["user_id"])
    op.create_index("ix_user_permissions_user_org", "user_permissions", ["user_id", "organization_id"])
    op.create_table(
        "user_branches",
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("branch_id", GUID(), sa.ForeignKey("branches.id"), primary_key=True),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "user_areas",
        sa.Column("user_id", GUID(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("area_id", GUID(), sa.ForeignKey("areas.id"), primary_key=True),
        sa.Column("granted_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "status_types",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=True),
        _flag("is_terminal", False),
        _flag("requires_reason", False),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "status_reasons",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("status_type_id", GUID(), sa.ForeignKey("status_types.id"), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        _flag("is_terminal", False),
        _flag("requires_remarks", False),
        _flag("is_active", True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_status_reasons_status_type_id", "status_reasons", ["status_type_id"])
    op.create_table(
        "status_transition_rules",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("organization_id", GUID(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("from_status_type_id", GUID(), sa.ForeignKey("status_types.id"), nullable=True),
        sa.Column("to_status_type_id", GUID(), sa.ForeignKey("status_types.id"), nullable=False),
        sa.Column("effect", sa.String(length=10), nullable=False, server_default="deny"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("effect IN ('allow', 'deny')", name="ck_status_transition_rules_effect"),
    )
    op.create_index(
        "ix_status_transition_rules_organization_id", "status_transition_rules", ["organization_id"]
    )
    op.create_table(
        "client_period_status",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column("client_id", GUID(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("period_type", sa.String(length=20), nullable=False),
        sa.Column("period_year", sa.Integer(), nullable=False),
        sa.Column("period_month", sa.Integer(), nullable=True),
        sa.Column("period_quarter", sa.Integer(), nullable=True),
        sa.Column("period_key", sa.String(length=16), nullable=False),
        sa.Column("status_type_id", GUID(), sa.ForeignKey("status_types.id"), nullable=False),
        sa.Column("reason_id", GUID(), sa.ForeignKey("status_reasons.id"), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        _flag("has_payment", False),
        sa.Column("update_count", sa.Integer(), nullable=False, server_default="1"),
        _flag("is_terminal", False),
        sa.Column("updated_by", GUID(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("client_id", "period_key", name="uq_client_period_status_period"),
    )
    op.create_index("ix_client_period_status_client_id", "client_period_status", ["client_id"])
    op.create_index(
        "ix_client_period_status_period", "client_period_status", ["period_type", "period_year"]
    )
    op.create_table(
        "status_events",
        sa.Column("id", GUID(), primary_key=True),
        sa.Column(
            "client_period_status_id", GUID(), sa.ForeignKey("client_period_status.id"), nullable=False
        ),
        sa.Column("status_type_id", GUID(), sa.ForeignKey("status_types.id"), nullable=False),
        sa.Column("reason_id", GUID(), sa.ForeignKey("status_reasons.id"), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        _flag("has_payment", False),
        sa.Column("event_sequence", sa.Integer(), nullable=False),
        sa.Column("created_by", GUID(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("client_period_status_id", "event_sequence", name="uq_status_events_sequence"),
    )
    op.create_index(
        "ix_status_events_client_period_status_id", "status_events", ["client_period_status_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_status_events_client_period_status_id", table_name="status_events")
    op.drop_table("status_events")
    op.drop_index("ix_client_period_status_period", table_name="client_period_status")
    op.drop_index("ix_client_period_status_client_id", table_name="client_period_status")
    op.drop_table("client_period_status")
    op.drop_index("ix_status_transition_rules_organization_id", table_name="status_transition_rules")
    op.drop_table("status_transition_rules")
    op.drop_index("ix_status_reasons_status_type_id", table_name="status_reasons")
    op.drop_table("status_reasons")
    op.drop_table("status_types")
    op.drop_table("user_areas")
    op.drop_table("user_branches")
    op.drop_index("ix_user_permissions_user_org", table_name="user_permissions")
    op.drop_index("ix_user_permissions_user_id", table_name="user_permissions")
    op.drop_table("user_permissions")
    op.drop_table("permissions")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_clients_product_id", table_name="clients")
    op.drop_index("ix_clients_branch_id", table_name="clients")
    op.drop_table("clients")
    op.drop_index("ix_products_organization_id", table_name="products")
    op.drop_table("products")
    op.drop_index("ix_area_branches_branch_id", table_name="area_branches")
    op.drop_index("ix_area_branches_area_id", table_name="area_branches")
    op.drop_table("area_branches")
    op.drop_index("ix_areas_organization_id", table_name="areas")
    op.drop_table("areas")
    op.drop_table("branches")
    op.drop_table("organizations")
