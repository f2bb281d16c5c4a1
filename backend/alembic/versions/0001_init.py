"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("display_name", sa.String(), nullable=True),
            sa.Column("company", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("profiles")
    if "ix_profiles_id" not in idxs:
        op.create_index("ix_profiles_id", "profiles", ["id"])
    if "ix_profiles_email" not in idxs:
        op.create_index("ix_profiles_email", "profiles", ["email"])
    if "ix_profiles_role" not in idxs:
        op.create_index("ix_profiles_role", "profiles", ["role"])

    if "admins" not in existing_tables:
        op.create_table(
            "admins",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("granted_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    if "ix_admins_user_id" not in existing_indexes("admins"):
        op.create_index("ix_admins_user_id", "admins", ["user_id"])

    if "credit_accounts" not in existing_tables:
        op.create_table(
            "credit_accounts",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("non_exclusive_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("exclusive_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.CheckConstraint("non_exclusive_credits >= 0", name="ck_credit_accounts_non_exclusive_nonneg"),
            sa.CheckConstraint("exclusive_credits >= 0", name="ck_credit_accounts_exclusive_nonneg"),
        )
    if "ix_credit_accounts_user_id" not in existing_indexes("credit_accounts"):
        op.create_index("ix_credit_accounts_user_id", "credit_accounts", ["user_id"])

    if "leads" not in existing_tables:
        op.create_table(
            "leads",
            sa.Column("job_id", sa.String(), primary_key=True),
            sa.Column("customer_id", sa.String(), nullable=True),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column(
                "state",
                sa.Enum("OPEN", "SHARED", "EXCLUSIVE", "CLAIMED", name="leadstate"),
                nullable=False,
            ),
            sa.Column("exclusive_owner", sa.String(), nullable=True),
            sa.Column("exclusive_unlocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("non_exclusive_unlocked_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("accepted_bid_id", sa.String(), nullable=True),
            sa.Column("accepted_quote_id", sa.String(), nullable=True),
            sa.Column("claimed_by", sa.String(), nullable=True),
            sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("leads")
    for col in ("job_id", "customer_id", "exclusive_owner", "claimed_by"):
        name = f"ix_leads_{col}"
        if name not in idxs:
            op.create_index(name, "leads", [col])

    if "lead_buyers" not in existing_tables:
        op.create_table(
            "lead_buyers",
            sa.Column("job_id", sa.String(), sa.ForeignKey("leads.job_id"), primary_key=True),
            sa.Column("contractor_id", sa.String(), primary_key=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    if "ix_lead_buyers_contractor_id" not in existing_indexes("lead_buyers"):
        op.create_index("ix_lead_buyers_contractor_id", "lead_buyers", ["contractor_id"])

    if "lead_unlocks" not in existing_tables:
        op.create_table(
            "lead_unlocks",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("job_id", sa.String(), nullable=False),
            sa.Column("contractor_id", sa.String(), nullable=False),
            sa.Column("exclusive", sa.Boolean(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("lead_unlocks")
    if "ix_lead_unlocks_job_id" not in idxs:
        op.create_index("ix_lead_unlocks_job_id", "lead_unlocks", ["job_id"])
    if "ix_lead_unlocks_contractor_id" not in idxs:
        op.create_index("ix_lead_unlocks_contractor_id", "lead_unlocks", ["contractor_id"])

    if "payments" not in existing_tables:
        op.create_table(
            "payments",
            sa.Column("session_id", sa.String(), primary_key=True),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=False),
            sa.Column("contractor_id", sa.String(), nullable=True),
            sa.Column("pack_id", sa.String(), nullable=True),
            sa.Column("credit_type", sa.String(), nullable=True),
            sa.Column("leads_granted", sa.Integer(), nullable=True),
            sa.Column("amount_cents", sa.Integer(), nullable=True),
            sa.Column("currency", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("payments")
    for col in ("session_id", "type", "status", "contractor_id"):
        name = f"ix_payments_{col}"
        if name not in idxs:
            op.create_index(name, "payments", [col])

    if "admin_actions" not in existing_tables:
        op.create_table(
            "admin_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("type", sa.String(), nullable=False),
            sa.Column("admin_id", sa.String(), nullable=False),
            sa.Column("target_uid", sa.String(), nullable=False),
            sa.Column("pool", sa.String(), nullable=True),
            sa.Column("delta", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("admin_actions")
    for col in ("id", "type", "admin_id", "target_uid"):
        name = f"ix_admin_actions_{col}"
        if name not in idxs:
            op.create_index(name, "admin_actions", [col])

    if "rate_limits" not in existing_tables:
        op.create_table(
            "rate_limits",
            sa.Column("user_id", sa.String(), primary_key=True),
            sa.Column("function_name", sa.String(), primary_key=True),
            sa.Column("call_times", sa.JSON(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )


def downgrade() -> None:
    op.drop_table("rate_limits")

    for col in ("target_uid", "admin_id", "type", "id"):
        op.drop_index(f"ix_admin_actions_{col}", table_name="admin_actions")
    op.drop_table("admin_actions")

    for col in ("contractor_id", "status", "type", "session_id"):
        op.drop_index(f"ix_payments_{col}", table_name="payments")
    op.drop_table("payments")

    op.drop_index("ix_lead_unlocks_contractor_id", table_name="lead_unlocks")
    op.drop_index("ix_lead_unlocks_job_id", table_name="lead_unlocks")
    op.drop_table("lead_unlocks")

    op.drop_index("ix_lead_buyers_contractor_id", table_name="lead_buyers")
    op.drop_table("lead_buyers")

    for col in ("claimed_by", "exclusive_owner", "customer_id", "job_id"):
        op.drop_index(f"ix_leads_{col}", table_name="leads")
    op.drop_table("leads")
    sa.Enum(name="leadstate").drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_credit_accounts_user_id", table_name="credit_accounts")
    op.drop_table("credit_accounts")

    op.drop_index("ix_admins_user_id", table_name="admins")
    op.drop_table("admins")

    op.drop_index("ix_profiles_role", table_name="profiles")
    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_index("ix_profiles_id", table_name="profiles")
    op.drop_table("profiles")
