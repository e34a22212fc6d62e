"""Initial schema: cash registers and sessions, ledger entries, piece sequences, business events

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.text("CURRENT_TIMESTAMP"))


def upgrade():
    # Users (identity lives elsewhere; ids only)
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"], unique=False)

    # Cash registers
    op.create_table(
        "cash_registers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("site", sa.String(length=128), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("opening_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("current_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("accounting_account", sa.String(length=20), nullable=False, server_default="5300"),
        sa.Column("responsible_user_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["responsible_user_id"], ["users.id"]),
        sa.UniqueConstraint("code", name="uq_cash_registers_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_registers_code", "cash_registers", ["code"], unique=False)
    op.create_index("ix_cash_registers_is_active", "cash_registers", ["is_active"], unique=False)

    # Membership payments
    op.create_table(
        "membership_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_user_id", sa.Integer(), nullable=False),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="cash"),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("piece_number", sa.String(length=32), nullable=True),
        sa.Column("posted_at", sa.Date(), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["member_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_membership_payments_member_user_id", "membership_payments", ["member_user_id"], unique=False)
    op.create_index("ix_membership_payments_payment_date", "membership_payments", ["payment_date"], unique=False)
    op.create_index("ix_membership_payments_status", "membership_payments", ["status"], unique=False)
    op.create_index("ix_membership_payments_piece_number", "membership_payments", ["piece_number"], unique=False)

    # Bank deposits
    op.create_table(
        "bank_deposits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("number", sa.String(length=32), nullable=False),
        sa.Column("register_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="preparing"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("movement_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("totals_by_method", sa.JSON(), nullable=True),
        sa.Column("bank_account", sa.String(length=64), nullable=True),
        sa.Column("slip_reference", sa.String(length=64), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("operator_user_id", sa.Integer(), nullable=False),
        sa.Column("validated_by_user_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("deposited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["register_id"], ["cash_registers.id"]),
        sa.ForeignKeyConstraint(["operator_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["validated_by_user_id"], ["users.id"]),
        sa.UniqueConstraint("number", name="uq_bank_deposits_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bank_deposits_number", "bank_deposits", ["number"], unique=False)
    op.create_index("ix_bank_deposits_register_id", "bank_deposits", ["register_id"], unique=False)
    op.create_index("ix_bank_deposits_status", "bank_deposits", ["status"], unique=False)

    # Cash sessions
    op.create_table(
        "cash_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("register_id", sa.Integer(), nullable=False),
        sa.Column("opened_by_user_id", sa.Integer(), nullable=False),
        sa.Column("closed_by_user_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        _timestamp("opened_at"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opening_balance", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("theoretical_closing_balance", sa.Numeric(12, 2), nullable=True),
        sa.Column("declared_closing_balance", sa.Numeric(12, 2), nullable=True),
        sa.Column("variance", sa.Numeric(12, 2), nullable=True),
        sa.Column("movement_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_in", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_out", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("count_detail", sa.JSON(), nullable=True),
        sa.Column("opening_comment", sa.Text(), nullable=True),
        sa.Column("closing_comment", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.ForeignKeyConstraint(["register_id"], ["cash_registers.id"]),
        sa.ForeignKeyConstraint(["opened_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["closed_by_user_id"], ["users.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_sessions_register_id", "cash_sessions", ["register_id"], unique=False)
    op.create_index("ix_cash_sessions_opened_by_user_id", "cash_sessions", ["opened_by_user_id"], unique=False)
    op.create_index("ix_cash_sessions_status", "cash_sessions", ["status"], unique=False)
    op.create_index("ix_cash_sessions_opened_at", "cash_sessions", ["opened_at"], unique=False)
    op.create_index(
        "uq_cash_sessions_one_open_per_register",
        "cash_sessions",
        ["register_id"],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    # Cash movements
    op.create_table(
        "cash_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("cash_session_id", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(length=8), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False, server_default="other"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False, server_default="cash"),
        sa.Column("membership_payment_id", sa.Integer(), nullable=True),
        sa.Column("member_user_id", sa.Integer(), nullable=True),
        sa.Column("operator_user_id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=50), nullable=True),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _timestamp("occurred_at"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="valid"),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("void_reason", sa.String(length=255), nullable=True),
        sa.Column("bank_deposit_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("amount > 0", name="ck_cash_movements_amount_positive"),
        sa.ForeignKeyConstraint(["cash_session_id"], ["cash_sessions.id"]),
        sa.ForeignKeyConstraint(["membership_payment_id"], ["membership_payments.id"]),
        sa.ForeignKeyConstraint(["member_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["operator_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["voided_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["bank_deposit_id"], ["bank_deposits.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_movements_cash_session_id", "cash_movements", ["cash_session_id"], unique=False)
    op.create_index("ix_cash_movements_session_status", "cash_movements", ["cash_session_id", "status"], unique=False)
    op.create_index("ix_cash_movements_category", "cash_movements", ["category"], unique=False)
    op.create_index("ix_cash_movements_membership_payment_id", "cash_movements", ["membership_payment_id"], unique=False)
    op.create_index("ix_cash_movements_operator_user_id", "cash_movements", ["operator_user_id"], unique=False)
    op.create_index("ix_cash_movements_occurred_at", "cash_movements", ["occurred_at"], unique=False)
    op.create_index("ix_cash_movements_status", "cash_movements", ["status"], unique=False)
    op.create_index("ix_cash_movements_bank_deposit_id", "cash_movements", ["bank_deposit_id"], unique=False)

    # Piece sequences
    op.create_table(
        "piece_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_type", sa.String(length=16), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("last_number", sa.Integer(), nullable=False, server_default="0"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("document_type", "fiscal_year", name="uq_piece_sequences_type_year"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_piece_sequences_document_type", "piece_sequences", ["document_type"], unique=False)

    # Disposal (weeding)
    op.create_table(
        "disposal_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("outflow_account", sa.String(length=20), nullable=True),
        sa.Column("journal_code", sa.String(length=8), nullable=False, server_default="OD"),
        sa.Column("piece_prefix", sa.String(length=16), nullable=False, server_default="SOR"),
        sa.Column("generate_entries", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("code", name="uq_disposal_types_code"),
        sqlite_autoincrement=True,
    )
    op.create_table(
        "disposal_lots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("number", sa.String(length=32), nullable=False),
        sa.Column("disposal_type_id", sa.Integer(), nullable=False),
        sa.Column("disposal_date", sa.Date(), nullable=False),
        sa.Column("destination", sa.String(length=255), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("total_value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="draft"),
        sa.Column("exported_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("piece_number", sa.String(length=32), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), nullable=False),
        sa.Column("validated_by_user_id", sa.Integer(), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["disposal_type_id"], ["disposal_types.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["validated_by_user_id"], ["users.id"]),
        sa.UniqueConstraint("number", name="uq_disposal_lots_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_disposal_lots_number", "disposal_lots", ["number"], unique=False)
    op.create_index("ix_disposal_lots_disposal_type_id", "disposal_lots", ["disposal_type_id"], unique=False)
    op.create_index("ix_disposal_lots_status", "disposal_lots", ["status"], unique=False)
    op.create_table(
        "disposal_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("disposal_lot_id", sa.Integer(), nullable=False),
        sa.Column("item_type", sa.String(length=16), nullable=False),
        sa.Column("item_id", sa.Integer(), nullable=False),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("reinstated", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reinstated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reinstated_by_user_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["disposal_lot_id"], ["disposal_lots.id"]),
        sa.ForeignKeyConstraint(["reinstated_by_user_id"], ["users.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_disposal_items_disposal_lot_id", "disposal_items", ["disposal_lot_id"], unique=False)
    op.create_index("ix_disposal_items_reinstated", "disposal_items", ["reinstated"], unique=False)

    # Ledger entries
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("journal_code", sa.String(length=8), nullable=False),
        sa.Column("journal_label", sa.String(length=100), nullable=True),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("piece_number", sa.String(length=32), nullable=False),
        sa.Column("entry_number", sa.String(length=48), nullable=False),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("account_number", sa.String(length=20), nullable=False),
        sa.Column("account_label", sa.String(length=255), nullable=True),
        sa.Column("auxiliary_account", sa.String(length=20), nullable=True),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("debit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("credit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("analytic_section", sa.String(length=32), nullable=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("membership_payment_id", sa.Integer(), nullable=True),
        sa.Column("disposal_lot_id", sa.Integer(), nullable=True),
        sa.Column("disposal_item_id", sa.Integer(), nullable=True),
        sa.Column("reverses_piece", sa.String(length=32), nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint("debit >= 0 AND credit >= 0", name="ck_ledger_entries_non_negative"),
        sa.CheckConstraint(
            "(debit = 0 AND credit > 0) OR (debit > 0 AND credit = 0)",
            name="ck_ledger_entries_one_side",
        ),
        sa.ForeignKeyConstraint(["membership_payment_id"], ["membership_payments.id"]),
        sa.ForeignKeyConstraint(["disposal_lot_id"], ["disposal_lots.id"]),
        sa.ForeignKeyConstraint(["disposal_item_id"], ["disposal_items.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_piece", "ledger_entries", ["journal_code", "fiscal_year", "piece_number"], unique=False)
    op.create_index("ix_ledger_entries_journal_code", "ledger_entries", ["journal_code"], unique=False)
    op.create_index("ix_ledger_entries_fiscal_year", "ledger_entries", ["fiscal_year"], unique=False)
    op.create_index("ix_ledger_entries_piece_number", "ledger_entries", ["piece_number"], unique=False)
    op.create_index("ix_ledger_entries_entry_date", "ledger_entries", ["entry_date"], unique=False)
    op.create_index("ix_ledger_entries_account_number", "ledger_entries", ["account_number"], unique=False)
    op.create_index("ix_ledger_entries_event_type", "ledger_entries", ["event_type"], unique=False)
    op.create_index("ix_ledger_entries_membership_payment_id", "ledger_entries", ["membership_payment_id"], unique=False)
    op.create_index("ix_ledger_entries_disposal_lot_id", "ledger_entries", ["disposal_lot_id"], unique=False)
    op.create_index("ix_ledger_entries_reverses_piece", "ledger_entries", ["reverses_piece"], unique=False)

    # Accounting configuration
    op.create_table(
        "account_mapping_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=32), nullable=False),
        sa.Column("label", sa.String(length=128), nullable=True),
        sa.Column("journal_code", sa.String(length=8), nullable=False),
        sa.Column("product_account", sa.String(length=20), nullable=False),
        sa.Column("product_account_label", sa.String(length=255), nullable=True),
        sa.Column("piece_prefix", sa.String(length=16), nullable=False),
        sa.Column("analytic_section", sa.String(length=32), nullable=True),
        sa.Column("generate_entries", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("updated_at"),
        sa.UniqueConstraint("event_type", name="uq_account_mapping_rules_event_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_account_mapping_rules_event_type", "account_mapping_rules", ["event_type"], unique=False)
    op.create_table(
        "encashment_accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column("account_number", sa.String(length=20), nullable=False),
        sa.Column("account_label", sa.String(length=255), nullable=True),
        sa.Column("journal_code", sa.String(length=8), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("payment_method", name="uq_encashment_accounts_method"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_encashment_accounts_payment_method", "encashment_accounts", ["payment_method"], unique=False)
    op.create_table(
        "journals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=8), nullable=False),
        sa.Column("label", sa.String(length=100), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("code", name="uq_journals_code"),
        sqlite_autoincrement=True,
    )
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("number", sa.String(length=20), nullable=False),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("number", name="uq_accounts_number"),
        sqlite_autoincrement=True,
    )

    # Audit trail
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=True),
        sa.Column("register_id", sa.Integer(), nullable=True),
        sa.Column("cash_session_id", sa.Integer(), nullable=True),
        _timestamp("occurred_at"),
        _timestamp("created_at"),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["register_id"], ["cash_registers.id"]),
        sa.ForeignKeyConstraint(["cash_session_id"], ["cash_sessions.id"]),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_events_entity", "audit_events", ["entity_type", "entity_id"], unique=False)
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"], unique=False)
    op.create_index("ix_audit_events_actor_user_id", "audit_events", ["actor_user_id"], unique=False)
    op.create_index("ix_audit_events_register_id", "audit_events", ["register_id"], unique=False)
    op.create_index("ix_audit_events_cash_session_id", "audit_events", ["cash_session_id"], unique=False)
    op.create_index("ix_audit_events_occurred_at", "audit_events", ["occurred_at"], unique=False)


def downgrade():
    op.drop_table("audit_events")
    op.drop_table("accounts")
    op.drop_table("journals")
    op.drop_table("encashment_accounts")
    op.drop_table("account_mapping_rules")
    op.drop_table("ledger_entries")
    op.drop_table("disposal_items")
    op.drop_table("disposal_lots")
    op.drop_table("disposal_types")
    op.drop_table("piece_sequences")
    op.drop_table("cash_movements")
    op.drop_table("cash_sessions")
    op.drop_table("bank_deposits")
    op.drop_table("membership_payments")
    op.drop_table("cash_registers")
    op.drop_table("users")
