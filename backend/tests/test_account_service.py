from datetime import date, datetime, timedelta

import pytest

from invoicing.errors import AccountNotFound, CreditLimitExceeded, ValidationError
from invoicing.models import Account, AccountTransaction
from invoicing.services import account_service


class TestCreateAccount:

    def test_defaults(self, db_session):
        account = account_service.create_account(
            name="Juan Perez", document_type="dni", document_number="30111222", credit_limit_cents=50000
        )
        assert account.document_type == "DNI"
        assert account.kind == "CUSTOMER"
        assert account.status == "ACTIVE"
        assert account.balance_cents == 0

    def test_duplicate_document_rejected(self, db_session, make_account):
        make_account(document_type="CUIT", document_number="20301112223")
        with pytest.raises(ValidationError) as exc_info:
            make_account(document_type="CUIT", document_number="20301112223")
        assert "account_id" in exc_info.value.details

    def test_unknown_document_type(self, db_session):
        with pytest.raises(ValidationError):
            account_service.create_account(name="X", document_type="LE", document_number="1")


class TestUpdateAccount:

    def test_changes_only_given_fields(self, db_session, make_account):
        account = make_account(name="Juan Perez", credit_limit_cents=10000, email="juan@example.com")

        updated = account_service.update_account(account.id, credit_limit_cents=25000, status="suspended")

        assert updated.credit_limit_cents == 25000
        assert updated.status == "SUSPENDED"
        assert updated.name == "Juan Perez"
        assert updated.email == "juan@example.com"

    def test_raised_limit_allows_later_debit(self, db_session, make_account):
        account = make_account(credit_limit_cents=1000)
        with pytest.raises(CreditLimitExceeded):
            account_service.post_transaction(
                account_id=account.id, direction="DEBIT", amount_cents=1500, description="Sale"
            )

        account_service.update_account(account.id, credit_limit_cents=2000)
        txn = account_service.post_transaction(
            account_id=account.id, direction="DEBIT", amount_cents=1500, description="Sale"
        )
        assert txn.balance_after_cents == 1500
        assert account_service.verify_account_ledger(account.id)["consistent"]

    @pytest.mark.parametrize(
        "changes",
        [
            {"status": "FROZEN"},
            {"credit_limit_cents": -1},
            {"credit_limit_cents": True},
            {"name": "   "},
        ],
    )
    def test_invalid_changes_rejected(self, db_session, make_account, changes):
        account = make_account(credit_limit_cents=1000)
        with pytest.raises(ValidationError) as exc_info:
            account_service.update_account(account.id, **changes)
        assert exc_info.value.details["account_id"] == account.id

        reloaded = db_session.get(Account, account.id)
        assert (reloaded.status, reloaded.credit_limit_cents) == ("ACTIVE", 1000)

    def test_unknown_account(self, db_session):
        with pytest.raises(AccountNotFound):
            account_service.update_account(404, status="CLOSED")


class TestPostTransaction:

    def test_debit_past_limit_fails(self, db_session, make_account):
        account = make_account(credit_limit_cents=50000)
        account_service.post_transaction(
            account_id=account.id, direction="DEBIT", amount_cents=48000, description="Opening"
        )

        with pytest.raises(CreditLimitExceeded) as exc_info:
            account_service.post_transaction(
                account_id=account.id, direction="DEBIT", amount_cents=5000, description="Too much"
            )

        assert exc_info.value.details["account_id"] == account.id
        db_session.rollback()
        assert db_session.get(Account, account.id).balance_cents == 48000
        assert AccountTransaction.query.filter_by(account_id=account.id).count() == 1

    def test_debit_up_to_limit_allowed(self, db_session, make_account):
        account = make_account(credit_limit_cents=50000)
        txn = account_service.post_transaction(
            account_id=account.id, direction="DEBIT", amount_cents=50000, description="Exactly"
        )
        assert txn.balance_after_cents == 50000

    def test_credit_never_checks_limit(self, db_session, make_account):
        account = make_account(credit_limit_cents=0)
        txn = account_service.post_transaction(
            account_id=account.id,
            direction="CREDIT",
            amount_cents=2500,
            description="Advance payment",
            payment_method="TRANSFER",
            reference_number="TRX-991",
        )
        assert txn.balance_after_cents == -2500
        assert txn.payment_method == "TRANSFER"

        refreshed = db_session.get(Account, account.id)
        assert refreshed.balance_cents == -2500
        assert refreshed.last_transaction_at is not None

    @pytest.mark.parametrize("amount", [0, -100, 10.5])
    def test_amount_must_be_positive_integer(self, db_session, make_account, amount):
        account = make_account()
        with pytest.raises(ValidationError):
            account_service.post_transaction(
                account_id=account.id, direction="DEBIT", amount_cents=amount, description="Bad"
            )

    def test_unknown_account(self, db_session):
        with pytest.raises(AccountNotFound) as exc_info:
            account_service.post_transaction(account_id=404, direction="CREDIT", amount_cents=1, description="x")
        assert exc_info.value.details == {"account_id": 404}

    def test_replay_matches_balance(self, db_session, make_account):
        account = make_account(credit_limit_cents=100000)
        for direction, amount in [("DEBIT", 30000), ("CREDIT", 10000), ("DEBIT", 45000), ("CREDIT", 65000)]:
            account_service.post_transaction(
                account_id=account.id, direction=direction, amount_cents=amount, description=direction
            )

        ledger = account_service.verify_account_ledger(account.id)
        assert ledger["consistent"]
        assert ledger["balance_cents"] == 0
        assert ledger["transaction_count"] == 4


class TestStatement:

    def test_totals_and_order(self, db_session, make_account):
        account = make_account()
        account_service.post_transaction(account_id=account.id, direction="DEBIT", amount_cents=1000, description="a")
        account_service.post_transaction(account_id=account.id, direction="CREDIT", amount_cents=400, description="b")
        account_service.post_transaction(account_id=account.id, direction="DEBIT", amount_cents=250, description="c")

        statement = account_service.account_statement(account.id)

        assert [t["description"] for t in statement["transactions"]] == ["a", "b", "c"]
        assert statement["total_debits_cents"] == 1250
        assert statement["total_credits_cents"] == 400
        assert statement["opening_balance_cents"] == 0
        assert statement["closing_balance_cents"] == 850

    def test_range_is_inclusive_by_day(self, db_session, make_account):
        account = make_account()
        account_service.post_transaction(account_id=account.id, direction="DEBIT", amount_cents=1000, description="old")
        account_service.post_transaction(account_id=account.id, direction="DEBIT", amount_cents=200, description="new")

        old = AccountTransaction.query.filter_by(description="old").one()
        old.occurred_at = datetime(2026, 1, 10, 23, 59, 59)
        new = AccountTransaction.query.filter_by(description="new").one()
        new.occurred_at = datetime(2026, 1, 11, 0, 0, 0)
        db_session.commit()

        statement = account_service.account_statement(account.id, date(2026, 1, 10), date(2026, 1, 10))
        assert [t["description"] for t in statement["transactions"]] == ["old"]
        assert statement["total_debits_cents"] == 1000

        statement = account_service.account_statement(account.id, date(2026, 1, 11), date(2026, 1, 11))
        assert [t["description"] for t in statement["transactions"]] == ["new"]
        assert statement["opening_balance_cents"] == 1000

    def test_statement_is_read_only(self, db_session, make_account):
        account = make_account()
        account_service.post_transaction(account_id=account.id, direction="DEBIT", amount_cents=1000, description="a")
        version = db_session.get(Account, account.id).version_id

        account_service.account_statement(account.id, date.today() - timedelta(days=1), date.today() + timedelta(days=1))

        assert db_session.get(Account, account.id).version_id == version
        assert AccountTransaction.query.filter_by(account_id=account.id).count() == 1

    def test_inverted_range_rejected(self, db_session, make_account):
        account = make_account()
        with pytest.raises(ValidationError):
            account_service.account_statement(account.id, date(2026, 2, 1), date(2026, 1, 1))
