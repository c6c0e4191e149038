"""
Pytest fixtures for back-office tests.

Provides an in-memory database, recording fakes for the notifier and the
offer resolver, and small builders for catalog stock, remittance types and
recipients.
"""

import io
from decimal import Decimal

import pytest
from werkzeug.datastructures import FileStorage

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import Combo, ComboItem, InventoryRecord, Product, RemittanceType
from backoffice.services.collaborators import install_default_collaborators, set_collaborator

USER_ID = "user-1"
OTHER_USER_ID = "user-2"
ADMIN_ID = "admin-1"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, event, payload, recipient, locale):
        self.sent.append({"event": event, "recipient": recipient, "locale": locale, "id": payload.get("id")})

    def events(self):
        return [n["event"] for n in self.sent]


class FakeOffers:
    """Accepts the codes it was given; records usage."""

    def __init__(self, offers=None):
        self.offers = offers or {}
        self.used = []

    def validate_offer(self, code, subtotal, user_id):
        offer = self.offers.get(code)
        if offer is None:
            return {"valid": False, "reason": "unknown_code"}
        return {"valid": True, "offer": offer}

    def record_usage(self, offer_id, user_id, reference_id):
        self.used.append((offer_id, user_id, reference_id))


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    storage_root = tmp_path_factory.mktemp("storage")
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STORAGE_ROOT': str(storage_root),
        'ADMIN_NOTIFICATION_RECIPIENT': 'admin@example.com',
        'SIDE_EFFECT_TIMEOUT_SECONDS': 2.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh data and default collaborators for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        install_default_collaborators(app)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier(app, db_session):
    fake = RecordingNotifier()
    set_collaborator(app, "notifier", fake)
    return fake


@pytest.fixture(scope='function')
def offers(app, db_session):
    fake = FakeOffers({
        "SAVE5": {"id": "offer-save5", "discount_amount": "5"},
        "BIG": {"id": "offer-big", "discount_amount": "500"},
    })
    set_collaborator(app, "offers", fake)
    return fake


def make_stock(session, *, quantity, reserved=0, name="Rice 1kg", price="4.50"):
    """Product plus its inventory row."""
    product = Product(name_es=name, name_en=name, base_price=Decimal(price))
    session.add(product)
    session.flush()
    record = InventoryRecord(product_id=product.id, quantity=quantity, reserved_quantity=reserved)
    session.add(record)
    session.commit()
    return record


def make_combo(session, parts, *, name="Family pack"):
    """parts: list of (InventoryRecord, quantity per combo)."""
    combo = Combo(name_es=name, name_en=name)
    session.add(combo)
    session.flush()
    for record, qty in parts:
        session.add(ComboItem(combo_id=combo.id, product_id=record.product_id, quantity=qty))
    session.commit()
    return combo


def product_line(record, quantity, unit_price="4.50"):
    return {
        "item_type": "product",
        "item_id": record.product_id,
        "item_name_es": "Producto",
        "quantity": quantity,
        "unit_price": unit_price,
        "inventory_id": record.id,
    }


def order_payload(total, *, user_id=USER_ID, **extra):
    return {"user_id": user_id, "total_amount": total, **extra}


def proof_file(name="proof.png", content_type="image/png", data=PNG_BYTES):
    return FileStorage(stream=io.BytesIO(data), filename=name, content_type=content_type)


@pytest.fixture(scope='function')
def stock(db_session):
    """Scenario stock: 20 units, nothing reserved."""
    return make_stock(db_session, quantity=20)


@pytest.fixture(scope='function')
def cash_type(db_session):
    """USD -> CUP cash delivery at a fixed rate of 24, 2% + 1 commission."""
    rtype = RemittanceType(
        name="USD -> CUP cash",
        currency_code="USD",
        delivery_currency="CUP",
        exchange_rate=Decimal("24"),
        commission_percentage=Decimal("2"),
        commission_fixed=Decimal("1"),
        min_amount=Decimal("10"),
        max_amount=Decimal("1000"),
        delivery_method="cash",
        max_delivery_days=3,
    )
    db_session.add(rtype)
    db_session.commit()
    return rtype


@pytest.fixture(scope='function')
def transfer_type(db_session):
    """USD -> CUP bank transfer, rate taken from the exchange_rates table."""
    rtype = RemittanceType(
        name="USD -> CUP transfer",
        currency_code="USD",
        delivery_currency="CUP",
        exchange_rate=None,
        commission_percentage=Decimal("3"),
        commission_fixed=Decimal("0"),
        min_amount=Decimal("20"),
        max_amount=None,
        delivery_method="transfer",
        max_delivery_days=5,
    )
    db_session.add(rtype)
    db_session.commit()
    return rtype


def remittance_payload(rtype, amount="100", **extra):
    return {
        "remittance_type_id": rtype.id,
        "amount": amount,
        "recipient_name": "Maria Perez",
        "recipient_phone": "+5355512345",
        "recipient_city": "La Habana",
        **extra,
    }
