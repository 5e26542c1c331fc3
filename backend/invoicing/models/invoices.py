from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Invoice(db.Model):
    """
    Fiscally-authorized sales document.

    LIFECYCLE:
    - PENDING: persisted, authorization not yet answered (transient)
    - COMPLETED: authorization code received from the authority
    - ERROR: authority refused or could not be reached (terminal)
    - VOIDED: reversed by an authorized credit note (terminal)

    SIDE EFFECTS (stock deduction + account debit):
    - PENDING: not attempted yet
    - APPLIED: stock deducted and account debited
    - FAILED: authorized but local effects could not be applied
    - REVERSED: restored by a void
    - REVERSAL_FAILED: voided but local effects could not be reversed

    Buyer fields are a snapshot taken at creation and never updated.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint(
            "point_of_sale", "voucher_type", "voucher_number", name="uq_invoices_pos_type_number"
        ),
        db.Index("ix_invoices_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Fiscal identity
    voucher_class = db.Column(db.String(2), nullable=False)  # A, B, C
    voucher_type = db.Column(db.Integer, nullable=False)  # authority document-type code
    point_of_sale = db.Column(db.Integer, nullable=False)
    voucher_number = db.Column(db.Integer, nullable=True)
    authorization_code = db.Column(db.String(32), nullable=True)
    authorization_expires_on = db.Column(db.Date, nullable=True)
    issued_on = db.Column(db.Date, nullable=False)

    # Buyer snapshot
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    buyer_name = db.Column(db.String(255), nullable=False)
    buyer_document_type = db.Column(db.String(16), nullable=False)
    buyer_document_number = db.Column(db.String(32), nullable=False)
    buyer_address = db.Column(db.String(255), nullable=True)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    side_effects_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    error_message = db.Column(db.Text, nullable=True)

    # Credit note (void)
    credit_note_type = db.Column(db.Integer, nullable=True)
    credit_note_number = db.Column(db.Integer, nullable=True)
    credit_note_authorization_code = db.Column(db.String(32), nullable=True)
    credit_note_authorization_expires_on = db.Column(db.Date, nullable=True)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    voided_by_user_id = db.Column(db.Integer, nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    account = db.relationship("Account", backref=db.backref("invoices", lazy=True))
    lines = db.relationship(
        "InvoiceLine",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceLine.id",
    )
    events = db.relationship(
        "InvoiceEvent",
        backref="invoice",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="InvoiceEvent.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def display_number(self) -> str:
        number = f"{self.voucher_number:08d}" if self.voucher_number is not None else "--------"
        return f"{self.voucher_class} {self.point_of_sale:05d}-{number}"

    def to_dict(self, include_lines: bool = False, include_events: bool = False) -> dict:
        data = {
            "id": self.id,
            "voucher_class": self.voucher_class,
            "voucher_type": self.voucher_type,
            "point_of_sale": self.point_of_sale,
            "voucher_number": self.voucher_number,
            "display_number": self.display_number,
            "authorization_code": self.authorization_code,
            "authorization_expires_on": self.authorization_expires_on.isoformat() if self.authorization_expires_on else None,
            "issued_on": self.issued_on.isoformat() if self.issued_on else None,
            "account_id": self.account_id,
            "buyer_name": self.buyer_name,
            "buyer_document_type": self.buyer_document_type,
            "buyer_document_number": self.buyer_document_number,
            "buyer_address": self.buyer_address,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "status": self.status,
            "side_effects_status": self.side_effects_status,
            "error_message": self.error_message,
            "credit_note_type": self.credit_note_type,
            "credit_note_number": self.credit_note_number,
            "credit_note_authorization_code": self.credit_note_authorization_code,
            "credit_note_authorization_expires_on": (
                self.credit_note_authorization_expires_on.isoformat()
                if self.credit_note_authorization_expires_on else None
            ),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "voided_by_user_id": self.voided_by_user_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        if include_events:
            data["events"] = [event.to_dict() for event in self.events]
        return data


class InvoiceLine(db.Model):
    """Individual line items on an invoice."""
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    sku_id = db.Column(db.Integer, db.ForeignKey("stock_keeping_units.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    sku = db.relationship("StockKeepingUnit")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "sku_id": self.sku_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


class InvoiceEvent(db.Model):
    """
    Append-only audit trail of an invoice.

    The ordered event sequence is the authoritative history of the
    document. Events are never updated or deleted.
    """
    __tablename__ = "invoice_events"
    __table_args__ = (
        db.Index("ix_invoice_events_invoice_occurred", "invoice_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    # created, authorization_received, error, voided, void_failed,
    # partial_commit_inconsistency, side_effects_repaired
    event_type = db.Column(db.String(64), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "event_type": self.event_type,
            "description": self.description,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
