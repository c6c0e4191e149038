"""Initial back-office schema: catalog stock, orders, remittances, payment accounts, activity log

Revision ID: 20261019_backoffice_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_backoffice_initial"
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column("id", sa.String(36), nullable=False)


def _created_at():
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def _updated_at():
    return sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False)


def _version_id():
    return sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1"))


def upgrade():
    # --- catalog stock ---------------------------------------------------
    op.create_table(
        "products",
        _id(),
        sa.Column("sku", sa.String(64), nullable=True),
        sa.Column("name_es", sa.String(255), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=True),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )
    op.create_index("ix_products_active_name", "products", ["is_active", "name_es"], unique=False)

    op.create_table(
        "combos",
        _id(),
        sa.Column("name_es", sa.String(255), nullable=False),
        sa.Column("name_en", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "combo_items",
        _id(),
        sa.Column("combo_id", sa.String(36), nullable=False),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.ForeignKeyConstraint(["combo_id"], ["combos.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("combo_id", "product_id", name="uq_combo_items_combo_product"),
        sa.CheckConstraint("quantity > 0", name="ck_combo_items_quantity_positive"),
    )
    op.create_index("ix_combo_items_combo_id", "combo_items", ["combo_id"], unique=False)
    op.create_index("ix_combo_items_product_id", "combo_items", ["product_id"], unique=False)

    op.create_table(
        "inventory",
        _id(),
        sa.Column("product_id", sa.String(36), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("reserved_quantity", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _version_id(),
        _updated_at(),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("product_id"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        sa.CheckConstraint("reserved_quantity >= 0", name="ck_inventory_reserved_non_negative"),
    )

    op.create_table(
        "inventory_movements",
        _id(),
        sa.Column("inventory_id", sa.String(36), nullable=False),
        sa.Column("movement_type", sa.String(16), nullable=False),
        sa.Column("quantity_change", sa.Integer(), nullable=False),
        sa.Column("reference_type", sa.String(32), nullable=True),
        sa.Column("reference_id", sa.String(36), nullable=True),
        sa.Column("notes", sa.String(255), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventory.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("inventory_movements", schema=None) as batch_op:
        batch_op.create_index("ix_inventory_movements_inventory_id", ["inventory_id"], unique=False)
        batch_op.create_index("ix_inventory_movements_movement_type", ["movement_type"], unique=False)
        batch_op.create_index("ix_inventory_movements_reference_id", ["reference_id"], unique=False)
        batch_op.create_index("ix_inventory_movements_inventory_created", ["inventory_id", "created_at"], unique=False)

    # --- payment-collection accounts ------------------------------------
    op.create_table(
        "payment_accounts",
        _id(),
        sa.Column("account_name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(30), nullable=True),
        sa.Column("bank_name", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("for_products", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("for_remittances", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("daily_limit", sa.Numeric(12, 2), nullable=True),
        sa.Column("monthly_limit", sa.Numeric(12, 2), nullable=True),
        sa.Column("current_daily_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("current_monthly_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        _version_id(),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "payment_account_transactions",
        _id(),
        sa.Column("payment_account_id", sa.String(36), nullable=False),
        sa.Column("reference_type", sa.String(16), nullable=False),
        sa.Column("reference_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["payment_account_id"], ["payment_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("payment_account_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_payment_account_transactions_payment_account_id", ["payment_account_id"], unique=False)
        batch_op.create_index("ix_payment_account_tx_reference", ["reference_type", "reference_id"], unique=False)

    # --- orders ----------------------------------------------------------
    op.create_table(
        "orders",
        _id(),
        sa.Column("order_number", sa.String(32), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("order_type", sa.String(16), nullable=False, server_default="product"),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("inventory_state", sa.String(16), nullable=False, server_default="none"),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("shipping_cost", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency_code", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("shipping_address", sa.JSON(), nullable=True),
        sa.Column("recipient_info", sa.JSON(), nullable=True),
        sa.Column("delivery_instructions", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("offer_id", sa.String(36), nullable=True),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="zelle"),
        sa.Column("payment_reference", sa.String(200), nullable=True),
        sa.Column("payment_proof_url", sa.Text(), nullable=True),
        sa.Column("payment_proof_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_account_id", sa.String(36), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("delivery_proof_url", sa.Text(), nullable=True),
        sa.Column("tracking_info", sa.String(255), nullable=True),
        sa.Column("validated_by", sa.String(36), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        _version_id(),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["payment_account_id"], ["payment_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_number", name="uq_orders_order_number"),
        sa.CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        sa.CheckConstraint("discount_amount >= 0", name="ck_orders_discount_non_negative"),
        sa.CheckConstraint("shipping_cost >= 0", name="ck_orders_shipping_non_negative"),
        sa.CheckConstraint("tax_amount >= 0", name="ck_orders_tax_non_negative"),
        sa.CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_orders_status", ["status"], unique=False)
        batch_op.create_index("ix_orders_payment_status", ["payment_status"], unique=False)
        batch_op.create_index("ix_orders_user_created", ["user_id", "created_at"], unique=False)
        batch_op.create_index("ix_orders_status_payment", ["status", "payment_status"], unique=False)

    op.create_table(
        "order_items",
        _id(),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("item_type", sa.String(16), nullable=False),
        sa.Column("item_id", sa.String(36), nullable=True),
        sa.Column("item_name_es", sa.String(255), nullable=True),
        sa.Column("item_name_en", sa.String(255), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("inventory_id", sa.String(36), nullable=True),
        sa.Column("remittance_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(12, 4), nullable=True),
        sa.Column("recipient_data", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["inventory_id"], ["inventory.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    with op.batch_alter_table("order_items", schema=None) as batch_op:
        batch_op.create_index("ix_order_items_order_id", ["order_id"], unique=False)
        batch_op.create_index("ix_order_items_inventory_id", ["inventory_id"], unique=False)

    op.create_table(
        "order_status_history",
        _id(),
        sa.Column("order_id", sa.String(36), nullable=False),
        sa.Column("previous_status", sa.String(16), nullable=True),
        sa.Column("new_status", sa.String(16), nullable=False),
        sa.Column("previous_payment_status", sa.String(16), nullable=True),
        sa.Column("new_payment_status", sa.String(16), nullable=True),
        sa.Column("changed_by", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_order_status_history_order_created", "order_status_history", ["order_id", "created_at"], unique=False)

    # --- remittances -----------------------------------------------------
    op.create_table(
        "remittance_types",
        _id(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("currency_code", sa.String(10), nullable=False),
        sa.Column("delivery_currency", sa.String(10), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(12, 4), nullable=True),
        sa.Column("commission_percentage", sa.Numeric(5, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("commission_fixed", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("min_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("delivery_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("max_delivery_days", sa.Integer(), nullable=False, server_default=sa.text("3")),
        sa.Column("warning_days", sa.Integer(), nullable=False, server_default=sa.text("2")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(36), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "commission_percentage >= 0 AND commission_percentage < 100",
            name="ck_remittance_types_commission_pct",
        ),
        sa.CheckConstraint("commission_fixed >= 0", name="ck_remittance_types_commission_fixed"),
        sa.CheckConstraint("min_amount > 0", name="ck_remittance_types_min_positive"),
    )
    with op.batch_alter_table("remittance_types", schema=None) as batch_op:
        batch_op.create_index("ix_remittance_types_currency_code", ["currency_code"], unique=False)
        batch_op.create_index("ix_remittance_types_active_order", ["is_active", "display_order"], unique=False)

    op.create_table(
        "recipients",
        _id(),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("phone", sa.String(30), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("id_number", sa.String(50), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("province", sa.String(100), nullable=True),
        sa.Column("municipality", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recipients_user_active", "recipients", ["user_id", "is_active"], unique=False)

    op.create_table(
        "recipient_bank_accounts",
        _id(),
        sa.Column("recipient_id", sa.String(36), nullable=False),
        sa.Column("bank_name", sa.String(200), nullable=False),
        sa.Column("account_holder_name", sa.String(200), nullable=False),
        sa.Column("account_number", sa.String(64), nullable=False),
        sa.Column("currency_code", sa.String(10), nullable=False),
        sa.Column("account_type", sa.String(32), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_recipient_bank_accounts_recipient_id", "recipient_bank_accounts", ["recipient_id"], unique=False)

    op.create_table(
        "remittances",
        _id(),
        sa.Column("remittance_number", sa.String(50), nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("remittance_type_id", sa.String(36), nullable=False),
        sa.Column("amount_sent", sa.Numeric(12, 2), nullable=False),
        sa.Column("exchange_rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("rate_source", sa.String(16), nullable=False, server_default="type"),
        sa.Column("commission_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("commission_fixed", sa.Numeric(10, 2), nullable=False),
        sa.Column("commission_total", sa.Numeric(10, 2), nullable=False),
        sa.Column("offer_discount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("amount_to_deliver", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency_sent", sa.String(10), nullable=False),
        sa.Column("currency_delivered", sa.String(10), nullable=False),
        sa.Column("delivery_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("recipient_id", sa.String(36), nullable=True),
        sa.Column("recipient_bank_account_id", sa.String(36), nullable=True),
        sa.Column("recipient_name", sa.String(200), nullable=False),
        sa.Column("recipient_phone", sa.String(30), nullable=False),
        sa.Column("recipient_id_number", sa.String(50), nullable=True),
        sa.Column("recipient_address", sa.Text(), nullable=True),
        sa.Column("recipient_province", sa.String(100), nullable=True),
        sa.Column("recipient_municipality", sa.String(100), nullable=True),
        sa.Column("delivery_notes", sa.Text(), nullable=True),
        sa.Column("offer_id", sa.String(36), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="payment_pending"),
        sa.Column("payment_account_id", sa.String(36), nullable=True),
        sa.Column("payment_proof_url", sa.Text(), nullable=True),
        sa.Column("payment_reference", sa.String(200), nullable=True),
        sa.Column("payment_proof_notes", sa.Text(), nullable=True),
        sa.Column("payment_proof_uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_validated_by", sa.String(36), nullable=True),
        sa.Column("payment_validation_notes", sa.Text(), nullable=True),
        sa.Column("payment_rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_rejection_reason", sa.Text(), nullable=True),
        sa.Column("max_delivery_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_notes", sa.Text(), nullable=True),
        sa.Column("delivery_proof_url", sa.Text(), nullable=True),
        sa.Column("delivery_notes_admin", sa.Text(), nullable=True),
        sa.Column("delivered_to_name", sa.String(200), nullable=True),
        sa.Column("delivered_to_id", sa.String(50), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_by", sa.String(36), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_notes", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(36), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("recalculated_at", sa.DateTime(timezone=True), nullable=True),
        _version_id(),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["remittance_type_id"], ["remittance_types.id"]),
        sa.ForeignKeyConstraint(["recipient_id"], ["recipients.id"]),
        sa.ForeignKeyConstraint(["recipient_bank_account_id"], ["recipient_bank_accounts.id"]),
        sa.ForeignKeyConstraint(["payment_account_id"], ["payment_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("remittance_number", name="uq_remittances_number"),
    )
    with op.batch_alter_table("remittances", schema=None) as batch_op:
        batch_op.create_index("ix_remittances_user_id", ["user_id"], unique=False)
        batch_op.create_index("ix_remittances_remittance_type_id", ["remittance_type_id"], unique=False)
        batch_op.create_index("ix_remittances_status", ["status"], unique=False)
        batch_op.create_index("ix_remittances_user_created", ["user_id", "created_at"], unique=False)
        batch_op.create_index("ix_remittances_status_created", ["status", "created_at"], unique=False)

    op.create_table(
        "remittance_status_history",
        _id(),
        sa.Column("remittance_id", sa.String(36), nullable=False),
        sa.Column("old_status", sa.String(32), nullable=True),
        sa.Column("new_status", sa.String(32), nullable=False),
        sa.Column("changed_by", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["remittance_id"], ["remittances.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_remittance_history_remittance_created", "remittance_status_history",
        ["remittance_id", "created_at"], unique=False,
    )

    op.create_table(
        "remittance_bank_transfers",
        _id(),
        sa.Column("remittance_id", sa.String(36), nullable=False),
        sa.Column("recipient_bank_account_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("processed_by", sa.String(36), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount_transferred", sa.Numeric(14, 2), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        _version_id(),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["remittance_id"], ["remittances.id"]),
        sa.ForeignKeyConstraint(["recipient_bank_account_id"], ["recipient_bank_accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "amount_transferred IS NULL OR amount_transferred > 0",
            name="ck_bank_transfers_amount_positive",
        ),
    )
    with op.batch_alter_table("remittance_bank_transfers", schema=None) as batch_op:
        batch_op.create_index("ix_remittance_bank_transfers_remittance_id", ["remittance_id"], unique=False)
        batch_op.create_index(
            "ix_remittance_bank_transfers_recipient_bank_account_id", ["recipient_bank_account_id"], unique=False
        )

    op.create_table(
        "exchange_rates",
        _id(),
        sa.Column("from_currency", sa.String(10), nullable=False),
        sa.Column("to_currency", sa.String(10), nullable=False),
        sa.Column("rate", sa.Numeric(12, 4), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("effective_date", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("rate > 0", name="ck_exchange_rates_rate_positive"),
    )
    op.create_index(
        "ix_exchange_rates_pair_effective", "exchange_rates",
        ["from_currency", "to_currency", "effective_date"], unique=False,
    )

    # --- audit and numbering ---------------------------------------------
    op.create_table(
        "activity_logs",
        _id(),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(32), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=True),
        sa.Column("performed_by", sa.String(36), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("activity_logs", schema=None) as batch_op:
        batch_op.create_index("ix_activity_logs_action", ["action"], unique=False)
        batch_op.create_index("ix_activity_logs_entity", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(32), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", "period", name="uq_doc_sequences_type_period"),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("document_sequences")
    op.drop_table("activity_logs")
    op.drop_table("exchange_rates")
    op.drop_table("remittance_bank_transfers")
    op.drop_table("remittance_status_history")
    op.drop_table("remittances")
    op.drop_table("recipient_bank_accounts")
    op.drop_table("recipients")
    op.drop_table("remittance_types")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("payment_account_transactions")
    op.drop_table("payment_accounts")
    op.drop_table("inventory_movements")
    op.drop_table("inventory")
    op.drop_table("combo_items")
    op.drop_table("combos")
    op.drop_table("products")
