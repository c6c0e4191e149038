# Overview: Admin CRUD for remittance types (currency pair, rate, commission, limits).

from __future__ import annotations

from decimal import Decimal

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Remittance, RemittanceType
from ..validation import ModelValidationPolicy, require_choice, validate_payload
from .concurrency import run_with_retry


DELIVERY_METHODS = {"cash", "transfer", "card"}
BANK_DELIVERY_METHODS = {"transfer", "card"}

TYPE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "currency_code",
        "delivery_currency",
        "exchange_rate",
        "commission_percentage",
        "commission_fixed",
        "min_amount",
        "max_amount",
        "delivery_method",
        "max_delivery_days",
        "warning_days",
        "is_active",
        "display_order",
        "description",
        "created_by",
    },
    required_on_create={"name", "currency_code", "delivery_currency", "min_amount"},
)


def _check_rules(values: dict) -> None:
    """Cross-field rules, applied to the merged (existing + patch) values."""
    rate = values.get("exchange_rate")
    if rate is not None and rate <= 0:
        raise ValidationError("exchange_rate must be > 0", field="exchange_rate")

    min_amount = values.get("min_amount")
    if min_amount is None or min_amount <= 0:
        raise ValidationError("min_amount must be > 0", field="min_amount")
    max_amount = values.get("max_amount")
    if max_amount is not None and max_amount < min_amount:
        raise ValidationError("max_amount must be >= min_amount", field="max_amount")

    pct = values.get("commission_percentage") or Decimal("0")
    if pct < 0 or pct >= 100:
        raise ValidationError("commission_percentage must be >= 0 and < 100", field="commission_percentage")
    fixed = values.get("commission_fixed") or Decimal("0")
    if fixed < 0:
        raise ValidationError("commission_fixed must be >= 0", field="commission_fixed")

    if values.get("delivery_method") is not None:
        require_choice(values["delivery_method"], "delivery_method", DELIVERY_METHODS)
    for days in ("max_delivery_days", "warning_days"):
        if values.get(days) is not None and values[days] < 0:
            raise ValidationError(f"{days} must be >= 0", field=days)


def create_remittance_type(data: dict) -> RemittanceType:
    patch = validate_payload(model=RemittanceType, payload=data, policy=TYPE_POLICY, partial=False)
    patch["currency_code"] = patch["currency_code"].upper()
    patch["delivery_currency"] = patch["delivery_currency"].upper()
    _check_rules(patch)

    def _op():
        rtype = RemittanceType(**patch)
        db.session.add(rtype)
        db.session.commit()
        return rtype
    return run_with_retry(_op, operation="remittance_type.create")


def update_remittance_type(type_id: str, data: dict) -> RemittanceType:
    patch = validate_payload(model=RemittanceType, payload=data, policy=TYPE_POLICY, partial=True)
    for key in ("currency_code", "delivery_currency"):
        if patch.get(key):
            patch[key] = patch[key].upper()

    def _op():
        rtype = get_remittance_type(type_id)
        merged = {key: getattr(rtype, key) for key in TYPE_POLICY.writable_fields}
        merged.update(patch)
        _check_rules(merged)
        for key, value in patch.items():
            setattr(rtype, key, value)
        db.session.commit()
        return rtype
    return run_with_retry(_op, operation="remittance_type.update", entity_id=type_id)


def delete_remittance_type(type_id: str) -> None:
    """Hard delete; refused while any remittance references the type."""
    def _op():
        rtype = get_remittance_type(type_id)
        in_use = db.session.query(Remittance.id).filter_by(remittance_type_id=type_id).first()
        if in_use is not None:
            raise ConflictError(
                "Cannot delete a remittance type that has remittances; deactivate it instead",
                context={"remittance_type_id": type_id},
            )
        db.session.delete(rtype)
        db.session.commit()
    run_with_retry(_op, operation="remittance_type.delete", entity_id=type_id)


def get_remittance_type(type_id: str, *, active_only: bool = False) -> RemittanceType:
    q = db.session.query(RemittanceType).filter(RemittanceType.id == type_id)
    if active_only:
        q = q.filter(RemittanceType.is_active.is_(True))
    rtype = q.first()
    if rtype is None:
        raise NotFoundError("Remittance type not found", field="remittance_type_id")
    return rtype


def list_remittance_types(*, active_only: bool = False) -> list[RemittanceType]:
    q = db.session.query(RemittanceType)
    if active_only:
        q = q.filter(RemittanceType.is_active.is_(True))
    return q.order_by(RemittanceType.display_order.asc(), RemittanceType.name.asc()).all()
