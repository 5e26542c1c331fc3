from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Account(db.Model):
    """
    Current account (cuenta corriente) of a customer or supplier.

    balance_cents is signed: positive means the holder owes the business.
    It is only ever written by account_service.post_transaction, together
    with last_transaction_at and one AccountTransaction row.
    """
    __tablename__ = "accounts"
    __table_args__ = (
        db.UniqueConstraint("document_type", "document_number", name="uq_accounts_document"),
        db.Index("ix_accounts_kind_status", "kind", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Holder
    name = db.Column(db.String(255), nullable=False)
    document_type = db.Column(db.String(16), nullable=False)  # CUIT, CUIL, DNI, CF, ...
    document_number = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    kind = db.Column(db.String(16), nullable=False, default="CUSTOMER")  # CUSTOMER, SUPPLIER
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)  # ACTIVE, SUSPENDED, CLOSED

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    last_transaction_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Account id={self.id} name={self.name!r} balance_cents={self.balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "kind": self.kind,
            "status": self.status,
            "credit_limit_cents": self.credit_limit_cents,
            "balance_cents": self.balance_cents,
            "last_transaction_at": to_utc_z(self.last_transaction_at) if self.last_transaction_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class AccountTransaction(db.Model):
    """
    Append-only ledger of account movements.

    DIRECTIONS:
    - DEBIT: increases what the holder owes (invoice issued)
    - CREDIT: decreases it (payment received, invoice voided)

    balance_after_cents is a snapshot taken at posting time and never
    recomputed. The latest row's snapshot equals Account.balance_cents.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "account_transactions"
    __table_args__ = (
        db.Index("ix_account_txns_account_occurred", "account_id", "occurred_at"),
        db.CheckConstraint("amount_cents > 0", name="ck_account_txns_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    direction = db.Column(db.String(8), nullable=False, index=True)  # DEBIT, CREDIT
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    # Manual postings (cash, transfer, cheque...)
    payment_method = db.Column(db.String(32), nullable=True)
    reference_number = db.Column(db.String(64), nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    account = db.relationship("Account", backref=db.backref("transactions", lazy=True))

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == "DEBIT" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "balance_after_cents": self.balance_after_cents,
            "description": self.description,
            "invoice_id": self.invoice_id,
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
