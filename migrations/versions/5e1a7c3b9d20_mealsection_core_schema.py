"""mealsection core schema

Revision ID: 5e1a7c3b9d20
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c3b9d20"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(insp, table_name: str) -> bool:
    try:
        return table_name in set(insp.get_table_names())
    except Exception:
        return False


def _index_exists(insp, table_name: str, index_name: str) -> bool:
    try:
        indexes = insp.get_indexes(table_name) or []
        return any(str(idx.get("name") or "") == str(index_name) for idx in indexes)
    except Exception:
        return False


def _create_index_if_missing(insp, table_name: str, column: str, *, unique: bool = False):
    index_name = f"ix_{table_name}_{column}"
    if _index_exists(insp, table_name, index_name):
        return
    op.create_index(index_name, table_name, [column], unique=unique)


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)

    if not _table_exists(insp, "accounts"):
        op.create_table(
            "accounts",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("role", sa.String(length=16), nullable=False, server_default="customer"),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("phone", sa.String(length=32), nullable=True),
            sa.Column("university", sa.String(length=120), nullable=True),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("available_bal", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("valid", sa.Boolean(), nullable=True),
            sa.Column("fcm_token", sa.String(length=512), nullable=True),
            sa.Column("store_name", sa.String(length=160), nullable=True),
            sa.Column("bank_name", sa.String(length=120), nullable=True),
            sa.Column("account_number", sa.String(length=32), nullable=True),
            sa.Column("account_name", sa.String(length=160), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    _create_index_if_missing(insp, "accounts", "email", unique=True)
    _create_index_if_missing(insp, "accounts", "role")
    _create_index_if_missing(insp, "accounts", "university")
    _create_index_if_missing(insp, "accounts", "store_name")

    if not _table_exists(insp, "ledger_entries"):
        op.create_table(
            "ledger_entries",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("reference", sa.String(length=128), nullable=False, server_default=""),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("direction", sa.String(length=8), nullable=False),
            sa.Column("kind", sa.String(length=32), nullable=False, server_default="adjustment"),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("previous_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("new_balance", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    for column in ("account_id", "reference", "kind", "created_at"):
        _create_index_if_missing(insp, "ledger_entries", column)

    if not _table_exists(insp, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("subtotal", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("service_fee", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("delivery_fee", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("university", sa.String(length=120), nullable=False, server_default="Not provided"),
            sa.Column("address", sa.String(length=255), nullable=False, server_default="Not provided"),
            sa.Column("phone_number", sa.String(length=32), nullable=False, server_default="Not provided"),
            sa.Column("order_option", sa.String(length=64), nullable=True),
            sa.Column("delivery_note", sa.Text(), nullable=True),
            sa.Column("vendor_note", sa.Text(), nullable=True),
            sa.Column("current_status", sa.String(length=16), nullable=False, server_default="Pending"),
            sa.Column("rider_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
    for column in ("user_id", "university", "current_status", "rider_id", "created_at"):
        _create_index_if_missing(insp, "orders", column)

    if not _table_exists(insp, "order_packs"):
        op.create_table(
            "order_packs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("vendor_name", sa.String(length=160), nullable=False),
            sa.Column("vendor_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("pack_type", sa.String(length=8), nullable=True),
            sa.Column("accepted", sa.Boolean(), nullable=True),
            sa.Column("decided_at", sa.DateTime(), nullable=True),
        )
    _create_index_if_missing(insp, "order_packs", "order_id")
    _create_index_if_missing(insp, "order_packs", "vendor_id")

    if not _table_exists(insp, "order_pack_items"):
        op.create_table(
            "order_pack_items",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("pack_id", sa.Integer(), sa.ForeignKey("order_packs.id"), nullable=False),
            sa.Column("name", sa.String(length=160), nullable=False),
            sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("image", sa.String(length=1024), nullable=True),
            sa.Column("category", sa.String(length=64), nullable=True),
            sa.Column("vendor_name", sa.String(length=160), nullable=True),
            sa.Column("vendor_id", sa.Integer(), nullable=True),
        )
    _create_index_if_missing(insp, "order_pack_items", "pack_id")

    if not _table_exists(insp, "order_messages"):
        op.create_table(
            "order_messages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id"), nullable=False),
            sa.Column("author_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("text", sa.Text(), nullable=False),
            sa.Column("from_admin", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_index_if_missing(insp, "order_messages", "order_id")

    if not _table_exists(insp, "withdrawals"):
        op.create_table(
            "withdrawals",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("account_role", sa.String(length=16), nullable=False),
            sa.Column("account_name", sa.String(length=160), nullable=False, server_default=""),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("status", sa.Boolean(), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    for column in ("account_id", "account_role", "created_at"):
        _create_index_if_missing(insp, "withdrawals", column)

    if not _table_exists(insp, "processed_paystack_refs"):
        op.create_table(
            "processed_paystack_refs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reference", sa.String(length=128), nullable=False),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("reference", name="uq_processed_paystack_refs_reference"),
        )
    _create_index_if_missing(insp, "processed_paystack_refs", "account_id")

    if not _table_exists(insp, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=32), nullable=False, server_default="paystack"),
            sa.Column("event", sa.String(length=64), nullable=True),
            sa.Column("reference", sa.String(length=128), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
            sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("credited_amount", sa.Integer(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("body_sha256", sa.String(length=64), nullable=True),
            sa.Column("raw_body", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("received_at", sa.DateTime(), nullable=False),
            sa.Column("handled_at", sa.DateTime(), nullable=True),
        )
    _create_index_if_missing(insp, "webhook_events", "reference")

    if not _table_exists(insp, "reconciliation_reports"):
        op.create_table(
            "reconciliation_reports",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("trigger", sa.String(length=16), nullable=False, server_default="api"),
            sa.Column("role", sa.String(length=16), nullable=True),
            sa.Column("account_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("drift_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("net_drift", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("drift_items_json", sa.Text(), nullable=True),
            sa.Column("requested_by", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
    _create_index_if_missing(insp, "reconciliation_reports", "created_at")


def downgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    for table_name in (
        "reconciliation_reports",
        "webhook_events",
        "processed_paystack_refs",
        "withdrawals",
        "order_messages",
        "order_pack_items",
        "order_packs",
        "orders",
        "ledger_entries",
        "accounts",
    ):
        if _table_exists(insp, table_name):
            op.drop_table(table_name)
