# Overview: Pytest coverage for saved recipients and their bank accounts.

import pytest

from backoffice.errors import NotFoundError, PermissionDeniedError, ValidationError
from backoffice.services import recipient_service as rs

from conftest import OTHER_USER_ID, USER_ID


def recipient(user_id=USER_ID, **extra):
    return rs.create_recipient(user_id, {"full_name": "Maria Perez", "phone": "+5355512345", **extra})


def bank(recipient_id, number="9200129912345678", **extra):
    data = {
        "bank_name": "BPA",
        "account_holder_name": "Maria Perez",
        "account_number": number,
        "currency_code": "cup",
        **extra,
    }
    return rs.add_bank_account(recipient_id, USER_ID, data)


class TestRecipients:
    def test_create_and_list(self, db_session):
        recipient(full_name="Zoe Diaz")
        favorite = recipient(full_name="Ana Ruiz", is_favorite=True)
        recipient(OTHER_USER_ID)
        names = [r.full_name for r in rs.list_recipients(USER_ID)]
        assert names[0] == favorite.full_name
        assert len(names) == 2

    def test_required(self, db_session):
        with pytest.raises(ValidationError):
            rs.create_recipient(USER_ID, {"full_name": "No phone"})

    def test_owner_only(self, db_session):
        r = recipient()
        with pytest.raises(PermissionDeniedError):
            rs.get_recipient(r.id, OTHER_USER_ID)
        with pytest.raises(PermissionDeniedError):
            rs.update_recipient(r.id, OTHER_USER_ID, {"phone": "1"})

    def test_update(self, db_session):
        r = rs.update_recipient(recipient().id, USER_ID, {"province": "Holguin"})
        assert r.province == "Holguin"

    def test_soft_delete(self, db_session):
        r = recipient()
        account = bank(r.id)
        rs.delete_recipient(r.id, USER_ID)
        assert rs.list_recipients(USER_ID) == []
        with pytest.raises(NotFoundError):
            rs.get_recipient(r.id, USER_ID)
        with pytest.raises(NotFoundError):
            rs.get_bank_account(account.id, USER_ID)


class TestBankAccounts:
    def test_first_account_is_default(self, db_session):
        r = recipient()
        first = bank(r.id)
        second = bank(r.id, number="1111222233334444")
        assert first.is_default is True
        assert second.is_default is False
        assert first.currency_code == "CUP"

    def test_new_default_demotes_old(self, db_session):
        r = recipient()
        first = bank(r.id)
        second = bank(r.id, number="1111222233334444", is_default=True)
        accounts = rs.list_bank_accounts(r.id, USER_ID)
        assert [a.id for a in accounts] == [second.id, first.id]
        assert accounts[1].is_default is False

    def test_short_number(self, db_session):
        with pytest.raises(ValidationError) as exc:
            bank(recipient().id, number="123")
        assert exc.value.field == "account_number"

    def test_account_must_belong_to_recipient(self, db_session):
        account = bank(recipient().id)
        other = recipient(full_name="Jose Diaz")
        with pytest.raises(ValidationError):
            rs.get_bank_account(account.id, USER_ID, recipient_id=other.id)

    def test_deactivate(self, db_session):
        r = recipient()
        account = bank(r.id)
        rs.deactivate_bank_account(account.id, USER_ID)
        assert rs.list_bank_accounts(r.id, USER_ID) == []
