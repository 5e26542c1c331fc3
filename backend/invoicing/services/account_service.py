# Overview: Service-layer operations for current accounts; balance, journal and credit-limit policy.

# backend/invoicing/services/account_service.py

from __future__ import annotations

from datetime import date, datetime, time, timedelta

from ..errors import AccountNotFound, CreditLimitExceeded, ValidationError
from ..extensions import db
from ..models import Account, AccountTransaction
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .voucher_service import BUYER_DOCUMENT_TYPES
"""
Account Ledger Invariants (authoritative)

- Account.balance_cents is a materialized value; AccountTransaction is its
  append-only journal. Rows are never updated or deleted.
- Replaying an account's transactions in order by signed amount reproduces
  balance_cents exactly, and the latest balance_after_cents equals it.
- DEBIT raises what the holder owes and is the only direction subject to
  the credit limit: new balance > credit_limit_cents is refused.
- balance, last_transaction_at and the journal row are written in one
  DB transaction under the account's version check.
"""


ACCOUNT_KINDS = ("CUSTOMER", "SUPPLIER")
ACCOUNT_STATUSES = ("ACTIVE", "SUSPENDED", "CLOSED")
DIRECTIONS = ("DEBIT", "CREDIT")


def create_account(
    *,
    name: str,
    document_type: str,
    document_number: str,
    kind: str = "CUSTOMER",
    credit_limit_cents: int = 0,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
) -> Account:
    name = (name or "").strip()
    document_type = (document_type or "").strip().upper()
    document_number = (document_number or "").strip()
    kind = (kind or "").strip().upper()

    if not name:
        raise ValidationError("name is required")
    if document_type not in BUYER_DOCUMENT_TYPES:
        raise ValidationError(
            f"Unknown document type {document_type!r}",
            details={"document_type": document_type, "allowed": sorted(BUYER_DOCUMENT_TYPES)},
        )
    if not document_number:
        raise ValidationError("document_number is required")
    if kind not in ACCOUNT_KINDS:
        raise ValidationError(f"kind must be one of {ACCOUNT_KINDS}", details={"kind": kind})
    if credit_limit_cents is None or credit_limit_cents < 0:
        raise ValidationError("credit_limit_cents cannot be negative")

    existing = Account.query.filter_by(document_type=document_type, document_number=document_number).first()
    if existing is not None:
        raise ValidationError(
            "An account with this document already exists",
            details={"account_id": existing.id, "document_type": document_type, "document_number": document_number},
        )

    account = Account(
        name=name,
        document_type=document_type,
        document_number=document_number,
        kind=kind,
        status="ACTIVE",
        credit_limit_cents=credit_limit_cents,
        balance_cents=0,
        email=email,
        phone=phone,
        address=address,
        notes=notes,
    )
    db.session.add(account)
    db.session.commit()
    return account


def get_account(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found", details={"account_id": account_id})
    return account


def update_account(
    account_id: int,
    *,
    name: str | None = None,
    credit_limit_cents: int | None = None,
    status: str | None = None,
    email: str | None = None,
    phone: str | None = None,
    address: str | None = None,
    notes: str | None = None,
) -> Account:
    """
    Change holder data, credit limit or status. None leaves a field as is.

    Balance and journal are untouched; a lowered limit only affects later
    debits.
    """
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"account_id": account_id})
    if credit_limit_cents is not None and (
        isinstance(credit_limit_cents, bool) or not isinstance(credit_limit_cents, int) or credit_limit_cents < 0
    ):
        raise ValidationError(
            "credit_limit_cents must be a non-negative integer",
            details={"account_id": account_id, "credit_limit_cents": credit_limit_cents},
        )
    if status is not None:
        status = status.strip().upper()
        if status not in ACCOUNT_STATUSES:
            raise ValidationError(
                f"status must be one of {ACCOUNT_STATUSES}",
                details={"account_id": account_id, "status": status},
            )

    changes = {
        "name": name,
        "credit_limit_cents": credit_limit_cents,
        "status": status,
        "email": email,
        "phone": phone,
        "address": address,
        "notes": notes,
    }

    def _op():
        account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found", details={"account_id": account_id})
        for field, value in changes.items():
            if value is not None:
                setattr(account, field, value)
        db.session.commit()
        return account

    return run_with_retry(_op)


def _post_transaction_locked(
    *,
    account_id: int,
    direction: str,
    amount_cents: int,
    description: str,
    invoice_id: int | None = None,
    actor_user_id: int | None = None,
    payment_method: str | None = None,
    reference_number: str | None = None,
) -> AccountTransaction:
    """Core posting without retry or commit. Caller owns the transaction."""
    direction = (direction or "").upper()
    if direction not in DIRECTIONS:
        raise ValidationError(f"direction must be one of {DIRECTIONS}", details={"direction": direction})
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer", details={"account_id": account_id})
    if not description:
        raise ValidationError("description is required", details={"account_id": account_id})

    account = lock_for_update(db.session.query(Account).filter_by(id=account_id)).first()
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found", details={"account_id": account_id})

    if direction == "DEBIT":
        new_balance = account.balance_cents + amount_cents
        if new_balance > account.credit_limit_cents:
            raise CreditLimitExceeded(
                "Debit exceeds the account's credit limit",
                details={
                    "account_id": account_id,
                    "balance_cents": account.balance_cents,
                    "amount_cents": amount_cents,
                    "credit_limit_cents": account.credit_limit_cents,
                },
            )
    else:
        new_balance = account.balance_cents - amount_cents

    now = utcnow()
    txn = AccountTransaction(
        account_id=account_id,
        direction=direction,
        amount_cents=amount_cents,
        balance_after_cents=new_balance,
        description=description,
        invoice_id=invoice_id,
        payment_method=payment_method,
        reference_number=reference_number,
        created_by_user_id=actor_user_id,
        occurred_at=now,
    )
    account.balance_cents = new_balance
    account.last_transaction_at = now
    db.session.add(txn)
    db.session.flush()
    return txn


def post_transaction(
    *,
    account_id: int,
    direction: str,
    amount_cents: int,
    description: str,
    invoice_id: int | None = None,
    actor_user_id: int | None = None,
    payment_method: str | None = None,
    reference_number: str | None = None,
) -> AccountTransaction:
    """
    Append one DEBIT or CREDIT to an account's journal and move its balance.

    Raises CreditLimitExceeded when a debit would leave the balance above
    the credit limit; nothing is written in that case.
    """
    def _op():
        txn = _post_transaction_locked(
            account_id=account_id,
            direction=direction,
            amount_cents=amount_cents,
            description=description,
            invoice_id=invoice_id,
            actor_user_id=actor_user_id,
            payment_method=payment_method,
            reference_number=reference_number,
        )
        db.session.commit()
        return txn

    return run_with_retry(_op)


def _range_bounds(start, end) -> tuple[datetime | None, datetime | None]:
    # A date bound covers the whole day; end is made exclusive.
    lower = upper = None
    if start is not None:
        lower = start if isinstance(start, datetime) else datetime.combine(start, time.min)
    if end is not None:
        if isinstance(end, datetime):
            upper = end + timedelta(microseconds=1)
        elif isinstance(end, date):
            upper = datetime.combine(end + timedelta(days=1), time.min)
    if lower is not None and upper is not None and lower >= upper:
        raise ValidationError("start must not be after end", details={"start": str(start), "end": str(end)})
    return lower, upper


def account_statement(account_id: int, start: date | datetime | None = None, end: date | datetime | None = None) -> dict:
    """
    Transactions of an account within [start, end], oldest first.

    Read only. Totals cover the transactions in range; balance fields are
    the snapshots around the range.
    """
    account = get_account(account_id)
    lower, upper = _range_bounds(start, end)

    q = AccountTransaction.query.filter_by(account_id=account_id)
    if lower is not None:
        q = q.filter(AccountTransaction.occurred_at >= lower)
    if upper is not None:
        q = q.filter(AccountTransaction.occurred_at < upper)
    transactions = q.order_by(AccountTransaction.occurred_at.asc(), AccountTransaction.id.asc()).all()

    total_debits = sum(t.amount_cents for t in transactions if t.direction == "DEBIT")
    total_credits = sum(t.amount_cents for t in transactions if t.direction == "CREDIT")

    if transactions:
        first = transactions[0]
        opening = first.balance_after_cents - first.signed_amount_cents
        closing = transactions[-1].balance_after_cents
    else:
        opening = closing = None

    return {
        "account": account.to_dict(),
        "start": start.isoformat() if start is not None else None,
        "end": end.isoformat() if end is not None else None,
        "transactions": [t.to_dict() for t in transactions],
        "total_debits_cents": total_debits,
        "total_credits_cents": total_credits,
        "opening_balance_cents": opening,
        "closing_balance_cents": closing,
    }


def verify_account_ledger(account_id: int) -> dict:
    """Replay the journal and compare with the stored balance."""
    account = get_account(account_id)
    transactions = (
        AccountTransaction.query.filter_by(account_id=account_id)
        .order_by(AccountTransaction.occurred_at.asc(), AccountTransaction.id.asc())
        .all()
    )

    running = 0
    snapshots_match = True
    for txn in transactions:
        running += txn.signed_amount_cents
        if txn.balance_after_cents != running:
            snapshots_match = False

    latest = transactions[-1].balance_after_cents if transactions else 0
    return {
        "account_id": account.id,
        "balance_cents": account.balance_cents,
        "replayed_balance_cents": running,
        "latest_balance_after_cents": latest,
        "transaction_count": len(transactions),
        "snapshots_match": snapshots_match,
        "consistent": (
            running == account.balance_cents
            and latest == account.balance_cents
            and snapshots_match
        ),
    }
