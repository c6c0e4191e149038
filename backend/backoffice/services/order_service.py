# Overview: Order lifecycle (checkout, payment review, fulfilment, cancel/reopen) with inventory compensation.

"""
Order State Machine

================================================================================
PURPOSE: Move orders through their lifecycle without ever losing or double
counting stock
================================================================================

STATUS (see transitions.ORDER_STATUS_TRANSITIONS):
    pending -> processing -> dispatched -> delivered -> completed
    pending|processing -> cancelled -> pending (reopen)

PAYMENT STATUS (see transitions.PAYMENT_STATUS_TRANSITIONS):
    pending -> proof_uploaded -> validated
    pending|proof_uploaded -> rejected -> pending (user re-uploads)

RULES:
1. An order only leaves pending (other than to cancelled) once its payment
   is validated.
2. Inventory-backed items are reserved at checkout. The hold is either
   reduced (payment validated) or released (payment rejected, order
   cancelled), never both. Re-uploading a proof after rejection, or
   reopening a cancelled order, takes the hold again. Order.inventory_state
   tracks where the order stands: none | reserved | released | reduced.
3. Combo items are not reserved; their constituent products are expanded
   in one batch and sold from unreserved stock at payment validation.
4. Every operation is one transaction: the order row is locked, inventory
   rows are locked in id order, everything commits at once or not at all.
5. Status history, activity log and payment-account bookkeeping are
   best effort (SAVEPOINT); notifications are sent after commit and never
   fail the operation.
================================================================================
"""

from __future__ import annotations

import math
import random
import time
from collections import defaultdict
from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import ComboItem, InventoryRecord, Order, OrderItem, OrderStatusHistory, PaymentAccount
from ..time_utils import coerce_datetime, utcnow
from ..validation import (
    require_choice,
    require_non_negative_decimal,
    require_positive_decimal,
    require_positive_int,
    require_text,
    require_uuid,
)
from .auth_service import require_owner
from .collaborators import get_collaborator
from .concurrency import lock_for_update, run_with_retry
from .inventory_service import release_many, reserve_many, reduce_many
from .payment_account_service import (
    assign_account,
    register_account_transaction,
    sync_reference_rejected,
    sync_reference_validated,
)
from .side_effects import best_effort, dispatch_notification, isolated_write
from .storage_service import store_proof
from .transitions import (
    ORDER_ADMIN_CANCELLABLE_STATUSES,
    ORDER_STATUS_TRANSITIONS,
    ORDER_USER_CANCELLABLE_STATUSES,
    PAYMENT_STATUS_TRANSITIONS,
)


VALID_ORDER_TYPES = {"product", "combo", "remittance", "mixed"}
VALID_ITEM_TYPES = {"product", "combo", "remittance"}
INVENTORY_STATES = {"none", "reserved", "released", "reduced"}

ORDER_NUMBER_ATTEMPTS = 5
MAX_PAGE_SIZE = 500


# =============================================================================
# ORDER NUMBERS
# =============================================================================

def generate_order_number(*, fallback: bool = False) -> str:
    """
    ORD-YYYYMMDD-NNNNN from the clock plus two random digits.

    If the candidate already exists (or fallback=True) a sub-second
    disambiguator is used instead. This is only a readable hint: the unique
    constraint on orders.order_number is what guarantees uniqueness, and
    create_order retries on violation.
    """
    now = utcnow()
    today = now.strftime("%Y%m%d")
    if not fallback:
        millis = f"{int(time.time() * 1000) % 1000:03d}"
        candidate = f"ORD-{today}-{millis}{random.randint(0, 99):02d}"
        taken = db.session.query(Order.id).filter_by(order_number=candidate).first()
        if taken is None:
            return candidate
    return f"ORD-{today}-{(now.microsecond // 10) % 100000:05d}"


def _is_order_number_clash(exc: IntegrityError) -> bool:
    return "order_number" in str(getattr(exc, "orig", exc))


def _insert_order(fields: dict) -> Order:
    number = generate_order_number()
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        order = Order(order_number=number, **fields)
        try:
            with db.session.begin_nested():
                db.session.add(order)
            return order
        except IntegrityError as exc:
            if not _is_order_number_clash(exc):
                raise
            current_app.logger.info("Order number %s already taken, regenerating", number)
            number = generate_order_number(fallback=True)
    raise ConflictError("Could not allocate a unique order number, retry", code="STATE_CHANGED")


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items) -> list[dict]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Order must contain at least one item", code="MISSING_REQUIRED_FIELD", field="items")

    normalized = []
    for idx, raw in enumerate(items):
        prefix = f"items[{idx}]"
        if not isinstance(raw, dict):
            raise ValidationError(f"{prefix} must be an object", field=prefix)
        item_type = require_choice(raw.get("item_type"), f"{prefix}.item_type", VALID_ITEM_TYPES)
        quantity = require_positive_int(raw.get("quantity"), f"{prefix}.quantity")
        unit_price = require_non_negative_decimal(raw.get("unit_price"), f"{prefix}.unit_price")
        total_price = require_non_negative_decimal(
            raw.get("total_price"), f"{prefix}.total_price", default=unit_price * quantity
        )
        inventory_id = raw.get("inventory_id")
        if inventory_id is not None:
            inventory_id = require_uuid(inventory_id, f"{prefix}.inventory_id")
        item_id = raw.get("item_id")
        if item_type == "combo" and not item_id:
            raise ValidationError(f"{prefix}.item_id is required for combos", field=f"{prefix}.item_id")

        normalized.append({
            "position": idx,
            "item_type": item_type,
            "item_id": item_id,
            "item_name_es": raw.get("item_name_es"),
            "item_name_en": raw.get("item_name_en"),
            "quantity": quantity,
            "unit_price": unit_price,
            "total_price": total_price,
            "inventory_id": inventory_id,
            "remittance_amount": raw.get("remittance_amount"),
            "exchange_rate": raw.get("exchange_rate"),
            "recipient_data": raw.get("recipient_data"),
        })
    return normalized


def _normalize_order_data(order_data: dict, items: list[dict]) -> dict:
    if not isinstance(order_data, dict):
        raise ValidationError("Invalid order data")
    user_id = require_text(order_data.get("user_id"), "user_id", max_length=36)
    items_total = sum((i["total_price"] for i in items), Decimal("0"))
    return {
        "user_id": user_id,
        "order_type": require_choice(order_data.get("order_type") or "product", "order_type", VALID_ORDER_TYPES),
        "subtotal": require_non_negative_decimal(order_data.get("subtotal"), "subtotal", default=items_total),
        "discount_amount": require_non_negative_decimal(order_data.get("discount_amount"), "discount_amount", default=Decimal("0")),
        "shipping_cost": require_non_negative_decimal(order_data.get("shipping_cost"), "shipping_cost", default=Decimal("0")),
        "tax_amount": require_non_negative_decimal(order_data.get("tax_amount"), "tax_amount", default=Decimal("0")),
        "total_amount": require_positive_decimal(order_data.get("total_amount"), "total_amount"),
        "currency_code": order_data.get("currency_code") or "USD",
        "shipping_address": order_data.get("shipping_address"),
        "recipient_info": order_data.get("recipient_info"),
        "delivery_instructions": order_data.get("delivery_instructions"),
        "notes": order_data.get("notes"),
        "payment_method": order_data.get("payment_method") or "zelle",
        "payment_reference": order_data.get("payment_reference"),
        "offer_id": order_data.get("offer_id"),
    }


def _resolve_offer(code: str, subtotal: Decimal, user_id: str) -> str:
    result = get_collaborator("offers").validate_offer(code, subtotal, user_id) or {}
    if not result.get("valid"):
        raise ValidationError(
            f"Offer '{code}' is not valid: {result.get('reason') or 'rejected'}",
            field="offer_code",
        )
    offer = result.get("offer") or {}
    return offer.get("id")


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _lock_order(order_id: str) -> Order:
    order_id = require_uuid(order_id, "order_id")
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", context={"order_id": order_id})
    return order


def _held_lines(order: Order) -> list[tuple[str, int]]:
    return [(i.inventory_id, i.quantity) for i in order.items if i.inventory_id]


def _combo_lines(order: Order) -> list[tuple[str, int]]:
    """Expand combo items into (inventory_id, qty) lines with two batched queries."""
    combos = [i for i in order.items if i.item_type == "combo" and i.item_id and not i.inventory_id]
    if not combos:
        return []
    parts = (
        db.session.query(ComboItem)
        .filter(ComboItem.combo_id.in_({i.item_id for i in combos}))
        .all()
    )
    product_ids = {p.product_id for p in parts}
    inventory_by_product = {}
    if product_ids:
        inventory_by_product = dict(
            db.session.query(InventoryRecord.product_id, InventoryRecord.id)
            .filter(InventoryRecord.product_id.in_(product_ids))
            .all()
        )
    parts_by_combo = defaultdict(list)
    for part in parts:
        parts_by_combo[part.combo_id].append(part)

    lines = []
    for item in combos:
        for part in parts_by_combo.get(item.item_id, []):
            inventory_id = inventory_by_product.get(part.product_id)
            if inventory_id:
                lines.append((inventory_id, item.quantity * part.quantity))
    return lines


def _take_hold(order: Order, actor_id: str | None, notes: str) -> None:
    lines = _held_lines(order)
    if not lines or order.inventory_state not in ("none", "released"):
        return
    reserve_many(lines, reference_type="order", reference_id=order.id, created_by=actor_id, notes=notes)
    order.inventory_state = "reserved"


def _release_hold(order: Order, actor_id: str | None, notes: str) -> None:
    if order.inventory_state != "reserved":
        return
    release_many(_held_lines(order), reference_type="order", reference_id=order.id, created_by=actor_id, notes=notes)
    order.inventory_state = "released"


def _commit_sale(order: Order, actor_id: str | None) -> None:
    if order.inventory_state == "reduced":
        return
    reference = {"reference_type": "order", "reference_id": order.id, "created_by": actor_id}
    held_lines = _held_lines(order)
    combo_lines = _combo_lines(order)
    if held_lines:
        reduce_many(held_lines, held=(order.inventory_state == "reserved"),
                    notes=f"Order {order.order_number} paid", **reference)
    if combo_lines:
        reduce_many(combo_lines, held=False, notes=f"Order {order.order_number} paid (combo)", **reference)
    if held_lines or combo_lines:
        order.inventory_state = "reduced"


def _record_history(order: Order, previous_status, previous_payment_status, changed_by, notes) -> bool:
    def _build():
        db.session.add(OrderStatusHistory(
            order_id=order.id,
            previous_status=previous_status,
            new_status=order.status,
            previous_payment_status=previous_payment_status,
            new_payment_status=order.payment_status,
            changed_by=changed_by,
            notes=notes,
            created_at=utcnow(),
        ))
    return isolated_write("order status history", _build, entity_id=order.id)


def _log_activity(action: str, order: Order, actor_id, description: str, **metadata) -> str:
    logger = get_collaborator("activity_logger")
    return best_effort(
        f"activity log {action}",
        lambda: logger.log(
            action=action,
            entity_type="order",
            entity_id=order.id,
            performed_by=actor_id,
            description=description,
            metadata={"order_number": order.order_number, **metadata},
        ),
        entity_id=order.id,
        default="error",
    )


def _notify_user(event: str, order: Order) -> None:
    dispatch_notification(event, order.to_dict(include_items=False), order.user_id)


def _notify_admin(event: str, order: Order) -> None:
    dispatch_notification(
        event,
        order.to_dict(include_items=False),
        current_app.config.get("ADMIN_NOTIFICATION_RECIPIENT"),
    )


def _require_payment_gate(order: Order, new_status: str) -> None:
    if order.status == "pending" and new_status not in ("pending", "cancelled") and order.payment_status != "validated":
        raise ValidationError(
            "Payment must be validated before the order can leave pending",
            code="INVALID_TRANSITION",
            field="payment_status",
            context={"payment_status": order.payment_status, "to": new_status},
        )


def _stamp(order: Order, new_status: str, actor_id: str | None) -> None:
    now = utcnow()
    if new_status == "processing" and order.processing_started_at is None:
        order.processing_started_at = now
    elif new_status == "dispatched":
        order.dispatched_at = now
    elif new_status == "delivered":
        order.delivered_at = now
    elif new_status == "completed":
        order.completed_at = now
    elif new_status == "cancelled":
        order.cancelled_at = now
        order.cancelled_by = actor_id


def _apply_status_change(order: Order, new_status: str, actor_id: str | None, notes: str | None) -> None:
    """
    Validate and apply one status move with its inventory compensation.

    Cancelling releases the hold; moving cancelled -> pending (reopen)
    resets payment to pending and takes the hold again.
    """
    ORDER_STATUS_TRANSITIONS.require_transition(order.status, new_status)
    _require_payment_gate(order, new_status)

    previous_status = order.status
    previous_payment_status = order.payment_status

    if new_status == "cancelled":
        _release_hold(order, actor_id, f"Order {order.order_number} cancelled")
    elif previous_status == "cancelled" and new_status == "pending":
        # reopen resets the payment cycle; validated is terminal so this is a reset, not an edge
        order.payment_status = "pending"
        order.rejection_reason = None
        order.cancellation_reason = None
        _take_hold(order, actor_id, f"Order {order.order_number} reopened")

    order.status = new_status
    _stamp(order, new_status, actor_id)
    db.session.flush()
    _record_history(order, previous_status, previous_payment_status, actor_id, notes)


def _transition(order_id: str, new_status: str, actor_id: str | None, notes: str | None, *, action: str, mutate=None) -> Order:
    def _op():
        order = _lock_order(order_id)
        if mutate is not None:
            mutate(order)
        _apply_status_change(order, new_status, actor_id, notes)
        _log_activity(action, order, actor_id, notes or f"Order moved to {new_status}", status=new_status)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation=f"order.{action}", entity_id=order_id)
    _notify_user("order.status_changed", order)
    return order


# =============================================================================
# CHECKOUT
# =============================================================================

def create_order(order_data: dict, items: list[dict]) -> Order:
    """
    Create a pending order with its items and reserve stock for every
    inventory-backed item, all in one transaction.

    order_data keys: user_id, total_amount (required); subtotal,
    discount_amount, shipping_cost, tax_amount, order_type, currency_code,
    shipping_address, recipient_info, delivery_instructions, notes,
    payment_method, payment_reference, payment_account_id, offer_id or
    offer_code.
    """
    normalized_items = _normalize_items(items)
    fields = _normalize_order_data(order_data, normalized_items)
    offer_code = order_data.get("offer_code")
    if offer_code:
        fields["offer_id"] = _resolve_offer(offer_code, fields["subtotal"], fields["user_id"])
    payment_account_id = order_data.get("payment_account_id")
    if payment_account_id is not None:
        payment_account_id = require_uuid(payment_account_id, "payment_account_id")

    def _op():
        order = _insert_order({**fields, "status": "pending", "payment_status": "pending", "inventory_state": "none"})
        for data in normalized_items:
            order.items.append(OrderItem(**data))
        db.session.flush()

        _take_hold(order, fields["user_id"], f"Order {order.order_number} created")
        _assign_payment_account(order, payment_account_id)
        db.session.flush()

        _record_history(order, None, None, fields["user_id"], "Order created")
        _log_activity(
            "order_created", order, fields["user_id"], f"Order {order.order_number} created",
            total_amount=str(order.total_amount), items=len(normalized_items),
        )
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="order.create")

    if order.offer_id:
        best_effort(
            "offer usage",
            get_collaborator("offers").record_usage,
            order.offer_id, order.user_id, order.id,
            entity_id=order.id,
        )
    _notify_admin("order.created", order)
    return order


def _assign_payment_account(order: Order, payment_account_id: str | None) -> None:
    """Best effort: attach a collection account and register the expected payment."""
    transaction_type = "remittance" if order.order_type == "remittance" else "product"

    def _build():
        if payment_account_id:
            account = lock_for_update(db.session.query(PaymentAccount).filter_by(id=payment_account_id)).first()
            if account is None:
                raise NotFoundError("Payment account not found")
            register_account_transaction(
                account, reference_type="order", reference_id=order.id, amount=order.total_amount
            )
        else:
            account, _tx = assign_account(
                transaction_type, order.total_amount, reference_type="order", reference_id=order.id
            )
            if account is None:
                current_app.logger.warning("No payment account available for order %s", order.id)
                return
        order.payment_account_id = account.id

    isolated_write("payment account assignment", _build, entity_id=order.id)


# =============================================================================
# PAYMENT REVIEW
# =============================================================================

def upload_payment_proof(file, order_id: str, user_id: str, *, payment_reference: str | None = None) -> Order:
    """
    Store a proof of payment for the caller's pending order.

    A previously rejected payment goes back through pending (taking the
    stock hold again) before moving to proof_uploaded.
    """
    order_id = require_uuid(order_id, "order_id")
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", context={"order_id": order_id})
    require_owner(order, user_id, entity_name="order")
    _check_proof_upload_allowed(order)

    proof_url = store_proof(
        file,
        bucket=current_app.config["ORDER_DOCUMENTS_BUCKET"],
        folder="payment-proofs",
        prefix=f"payment-proof-{order.id}",
    )

    def _op():
        order = _lock_order(order_id)
        require_owner(order, user_id, entity_name="order")
        _check_proof_upload_allowed(order)
        previous_payment_status = order.payment_status

        if order.payment_status == "rejected":
            PAYMENT_STATUS_TRANSITIONS.require_transition("rejected", "pending", field="payment_status")
            order.payment_status = "pending"
            _take_hold(order, user_id, f"Order {order.order_number} proof re-uploaded")
        PAYMENT_STATUS_TRANSITIONS.require_transition(order.payment_status, "proof_uploaded", field="payment_status")

        order.payment_status = "proof_uploaded"
        order.payment_proof_url = proof_url
        order.payment_proof_uploaded_at = utcnow()
        order.rejection_reason = None
        if payment_reference:
            order.payment_reference = payment_reference
        db.session.flush()

        _record_history(order, order.status, previous_payment_status, user_id, "Payment proof uploaded")
        _log_activity("payment_proof_uploaded", order, user_id, "Payment proof uploaded", proof_url=proof_url)
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="order.upload_payment_proof", entity_id=order_id)
    _notify_admin("order.payment_proof_uploaded", order)
    return order


def _check_proof_upload_allowed(order: Order) -> None:
    if order.status != "pending":
        raise ValidationError(
            f"Payment proof can only be uploaded while the order is pending (status: {order.status})",
            code="INVALID_TRANSITION",
            field="status",
        )
    if order.payment_status not in ("pending", "rejected"):
        PAYMENT_STATUS_TRANSITIONS.require_transition(order.payment_status, "proof_uploaded", field="payment_status")


def validate_payment(order_id: str, admin_id: str, *, notes: str | None = None, override: bool = False) -> Order:
    """
    Approve the payment: pending/proof_uploaded -> processing/validated and
    convert the stock hold into a sale (combo constituents included).

    Without ``override`` a proof must have been uploaded; with it an admin
    may validate a payment confirmed some other way (pending -> validated).
    Any product short on stock fails the whole validation with nothing
    reduced.
    """
    def _op():
        order = _lock_order(order_id)
        if order.status != "pending":
            ORDER_STATUS_TRANSITIONS.require_transition(order.status, "processing")
        if order.payment_status == "pending" and not override:
            raise ValidationError(
                "No payment proof has been uploaded for this order",
                code="INVALID_TRANSITION",
                field="payment_status",
                context={"payment_status": order.payment_status, "allowed": PAYMENT_STATUS_TRANSITIONS.allowed_from("pending")},
            )
        PAYMENT_STATUS_TRANSITIONS.require_transition(order.payment_status, "validated", field="payment_status")

        previous_status = order.status
        previous_payment_status = order.payment_status
        _commit_sale(order, admin_id)

        order.payment_status = "validated"
        order.validated_by = admin_id
        order.validated_at = utcnow()
        ORDER_STATUS_TRANSITIONS.require_transition(order.status, "processing")
        order.status = "processing"
        _stamp(order, "processing", admin_id)
        db.session.flush()

        _record_history(order, previous_status, previous_payment_status, admin_id, notes or "Payment validated by admin")
        logged = _log_activity("payment_validated", order, admin_id, "Payment validated", override=override)
        if logged == "inserted":
            isolated_write(
                "payment account sync",
                lambda: sync_reference_validated("order", order.id),
                entity_id=order.id,
            )
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="order.validate_payment", entity_id=order_id)
    _notify_user("order.payment_validated", order)
    return order


def reject_payment(order_id: str, admin_id: str, reason: str) -> Order:
    """
    Reject the payment but keep the order pending so the customer can retry
    with a new proof. The stock hold is released.
    """
    reason = require_text(reason, "reason")

    def _op():
        order = _lock_order(order_id)
        if order.status != "pending":
            raise ValidationError(
                f"Payment can only be rejected while the order is pending (status: {order.status})",
                code="INVALID_TRANSITION",
                field="status",
            )
        PAYMENT_STATUS_TRANSITIONS.require_transition(order.payment_status, "rejected", field="payment_status")

        previous_payment_status = order.payment_status
        _release_hold(order, admin_id, f"Order {order.order_number} payment rejected")
        order.payment_status = "rejected"
        order.rejection_reason = reason
        db.session.flush()

        _record_history(order, order.status, previous_payment_status, admin_id, f"Payment rejected: {reason}")
        _log_activity("payment_rejected", order, admin_id, f"Payment rejected: {reason}")
        isolated_write(
            "payment account sync",
            lambda: sync_reference_rejected("order", order.id, reason),
            entity_id=order.id,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op, operation="order.reject_payment", entity_id=order_id)
    _notify_user("order.payment_rejected", order)
    return order


# =============================================================================
# FULFILMENT
# =============================================================================

def update_order_status(order_id: str, new_status: str, admin_id: str, notes: str | None = None) -> Order:
    """Generic admin move along the status table (with the same compensation)."""
    return _transition(order_id, new_status, admin_id, notes, action="status_updated")


def start_processing_order(order_id: str, admin_id: str) -> Order:
    return _transition(order_id, "processing", admin_id, "Processing started", action="processing_started")


def mark_order_as_dispatched(order_id: str, admin_id: str, tracking_info: str | None = None) -> Order:
    def _mutate(order: Order) -> None:
        if tracking_info:
            order.tracking_info = tracking_info.strip()[:255]

    notes = f"Dispatched. Tracking: {tracking_info}" if tracking_info else "Dispatched"
    return _transition(order_id, "dispatched", admin_id, notes, action="dispatched", mutate=_mutate)


def mark_order_as_delivered(order_id: str, proof_file, admin_id: str) -> Order:
    """dispatched -> delivered; the delivery proof is uploaded first and is mandatory."""
    order_id = require_uuid(order_id, "order_id")
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", context={"order_id": order_id})
    ORDER_STATUS_TRANSITIONS.require_transition(order.status, "delivered")

    proof_url = store_proof(
        proof_file,
        bucket=current_app.config["ORDER_DOCUMENTS_BUCKET"],
        folder="delivery-proofs",
        prefix=f"delivery-proof-{order.id}",
    )

    def _mutate(order: Order) -> None:
        order.delivery_proof_url = proof_url

    return _transition(order_id, "delivered", admin_id, "Delivered with proof", action="delivered", mutate=_mutate)


def complete_order(order_id: str, admin_id: str | None = None) -> Order:
    return _transition(order_id, "completed", admin_id, "Order completed", action="completed")


# =============================================================================
# CANCEL / REOPEN
# =============================================================================

def _cancel(order_id: str, actor_id: str, reason: str | None, *, allowed: frozenset, owner_id: str | None, action: str) -> Order:
    def _op():
        order = _lock_order(order_id)
        if owner_id is not None:
            require_owner(order, owner_id, entity_name="order")
        if order.status not in allowed:
            raise ValidationError(
                f"Order cannot be cancelled from status '{order.status}'. Cancellable: {', '.join(sorted(allowed))}",
                code="INVALID_TRANSITION",
                field="status",
                context={"from": order.status, "allowed": sorted(allowed)},
            )
        order.cancellation_reason = reason
        _apply_status_change(order, "cancelled", actor_id, reason or "Order cancelled")
        _log_activity(action, order, actor_id, reason or "Order cancelled")
        db.session.commit()
        return order

    order = run_with_retry(_op, operation=f"order.{action}", entity_id=order_id)
    if owner_id is None:
        _notify_user("order.cancelled", order)
    else:
        _notify_admin("order.cancelled", order)
    return order


def cancel_order(order_id: str, admin_id: str, reason: str | None = None) -> Order:
    """Admin cancel from pending or processing; any stock hold is released."""
    return _cancel(order_id, admin_id, reason, allowed=ORDER_ADMIN_CANCELLABLE_STATUSES, owner_id=None,
                   action="cancelled_by_admin")


def cancel_order_by_user(order_id: str, user_id: str) -> Order:
    return _cancel(order_id, user_id, "Cancelled by customer", allowed=ORDER_USER_CANCELLABLE_STATUSES,
                   owner_id=user_id, action="cancelled_by_user")


def reopen_order(order_id: str, user_id: str) -> Order:
    def _check(order: Order) -> None:
        require_owner(order, user_id, entity_name="order")
    return _transition(order_id, "pending", user_id, "Order reopened by customer", action="reopened", mutate=_check)


def reopen_order_by_admin(order_id: str, admin_id: str, reason: str) -> Order:
    reason = require_text(reason, "reason")
    return _transition(order_id, "pending", admin_id, f"Order reopened by admin: {reason}", action="reopened_by_admin")


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: str) -> Order:
    order_id = require_uuid(order_id, "order_id")
    order = db.session.query(Order).filter_by(id=order_id).first()
    if order is None:
        raise NotFoundError("Order not found", context={"order_id": order_id})
    return order


def list_user_orders(user_id: str, *, status: str | None = None, limit: int = 50, offset: int = 0) -> list[Order]:
    q = db.session.query(Order).filter(Order.user_id == user_id)
    if status:
        q = q.filter(Order.status == require_choice(status, "status", ORDER_STATUS_TRANSITIONS.states))
    limit, offset = _page(limit, offset)
    return q.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()


def list_orders(
    *,
    status: str | None = None,
    payment_status: str | None = None,
    user_id: str | None = None,
    date_from=None,
    date_to=None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """Admin listing; returns (page, total)."""
    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == require_choice(status, "status", ORDER_STATUS_TRANSITIONS.states))
    if payment_status:
        q = q.filter(Order.payment_status == require_choice(
            payment_status, "payment_status", PAYMENT_STATUS_TRANSITIONS.states))
    if user_id:
        q = q.filter(Order.user_id == user_id)
    if date_from is not None:
        q = q.filter(Order.created_at >= coerce_datetime(date_from))
    if date_to is not None:
        q = q.filter(Order.created_at <= coerce_datetime(date_to))
    if search:
        q = q.filter(Order.order_number.ilike(f"%{search.strip()}%"))

    total = q.count()
    limit, offset = _page(limit, offset)
    rows = q.order_by(Order.created_at.desc(), Order.order_number.desc()).offset(offset).limit(limit).all()
    return rows, total


def _page(limit: int, offset: int) -> tuple[int, int]:
    if offset < 0:
        offset = 0
    if limit < 1:
        limit = 1
    if limit > MAX_PAGE_SIZE:
        limit = MAX_PAGE_SIZE
    return limit, offset


def get_pending_orders_count() -> int:
    """Orders still waiting on payment review (status pending)."""
    return int(db.session.query(func.count(Order.id)).filter(Order.status == "pending").scalar() or 0)


def get_days_in_processing(order: Order, *, now=None) -> int | None:
    """Whole days (rounded up) an order has been processing; None otherwise."""
    if order is None or order.status != "processing" or order.processing_started_at is None:
        return None
    now = coerce_datetime(now) if now is not None else utcnow()
    started = coerce_datetime(order.processing_started_at)
    seconds = abs((now - started).total_seconds())
    return math.ceil(seconds / 86400)


def get_order_status_history(order_id: str) -> list[OrderStatusHistory]:
    get_order(order_id)
    return (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.created_at.asc())
        .all()
    )
