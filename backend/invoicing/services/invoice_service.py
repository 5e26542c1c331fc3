# Overview: Invoice workflow; issuance and void state machine over the authority, stock and account ledgers.

# backend/invoicing/services/invoice_service.py

from __future__ import annotations

from flask import current_app

from ..errors import (
    AuthorityError,
    ConcurrencyConflict,
    InvalidState,
    InvoicingError,
    PartialCommitInconsistency,
    ValidationError,
)
from ..extensions import db, fiscal
from ..models import Account, Invoice, InvoiceEvent, InvoiceLine
from ..time_utils import fiscal_today, utcnow
from .account_service import _post_transaction_locked
from .concurrency import lock_for_update, run_with_retry
from .fiscal_client import VAT_ALIQUOT_IDS, AssociatedVoucher, AuthorizationRequest
from .inventory_service import _adjust_stock_locked, check_availability
from .notifications import emit_stock_changed
from .pricing_service import compute_invoice
from .voucher_service import (
    buyer_document_code,
    credit_note_type_code,
    invoice_type_code,
    next_voucher_number,
    validate_point_of_sale,
)
"""
Invoice Workflow (authoritative)

Issuance:
1. validate input            -> ValidationError, nothing written
2. check stock availability  -> SkuNotFound / InsufficientStock, nothing written
3. compute totals
4. persist PENDING invoice + lines + 'created' event
5. allocate number, request authorization
   - failure: ERROR + 'error' event, error re-raised with invoice_id
   - success: COMPLETED + 'authorization_received' event
   - authorization cannot be written: 'partial_commit_inconsistency' event
     carrying the authorization, PartialCommitInconsistency raised
6. deduct stock and debit the buyer as one DB transaction
   - failure: rolled back, side effects FAILED, invoice stays COMPLETED,
     PartialCommitInconsistency raised (an authorized voucher is never
     taken back)

Void (COMPLETED only):
1. authorize a credit note referencing the original voucher
   - failure: 'void_failed' event, invoice stays COMPLETED
2. VOIDED + 'voided' event, status re-checked under the row lock
   - no longer COMPLETED: the unused credit note is kept in a
     'partial_commit_inconsistency' event, InvalidState raised
3. if issuance effects were APPLIED: restore stock and credit the buyer as
   one DB transaction; failure -> REVERSAL_FAILED + inconsistency

Side effects move PENDING/FAILED -> APPLIED and APPLIED/REVERSAL_FAILED ->
REVERSED only; any other prior state raises InvalidState.

repair_side_effects re-runs step 6 (or void step 3) for FAILED /
REVERSAL_FAILED invoices.
"""


def _authority(authority=None):
    return authority if authority is not None else fiscal.client


def _add_event(invoice: Invoice, event_type: str, description: str, payload: dict | None = None) -> InvoiceEvent:
    event = InvoiceEvent(
        invoice_id=invoice.id,
        event_type=event_type,
        description=description,
        payload=payload or {},
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def _load_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise ValidationError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise ValidationError(f"Invoice {invoice_id} not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoice_events(invoice_id: int) -> list[InvoiceEvent]:
    get_invoice(invoice_id)
    return (
        InvoiceEvent.query.filter_by(invoice_id=invoice_id)
        .order_by(InvoiceEvent.id.asc())
        .all()
    )


def _validate_lines(lines) -> list[dict]:
    if not lines:
        raise ValidationError("Invoice requires at least one line")

    normalized = []
    for index, line in enumerate(lines):
        sku_id = line.get("sku_id")
        quantity = line.get("quantity")
        price = line.get("unit_price_cents")
        if isinstance(sku_id, bool) or not isinstance(sku_id, int):
            raise ValidationError("sku_id must be an integer", details={"line": index, "sku_id": sku_id})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                "quantity must be a positive integer",
                details={"line": index, "sku_id": sku_id, "quantity": quantity},
            )
        if price is not None and (isinstance(price, bool) or not isinstance(price, int) or price <= 0):
            raise ValidationError(
                "unit_price_cents must be a positive integer",
                details={"line": index, "sku_id": sku_id, "unit_price_cents": price},
            )
        normalized.append({
            "sku_id": sku_id,
            "quantity": quantity,
            "unit_price_cents": price,
            "description": line.get("description"),
        })
    return normalized


def _validate_buyer(account_id: int) -> Account:
    account = db.session.get(Account, account_id)
    if account is None:
        raise ValidationError(f"Buyer account {account_id} not found", details={"account_id": account_id})
    if account.kind != "CUSTOMER":
        raise ValidationError("Buyer account is not a customer account", details={"account_id": account_id})
    if account.status != "ACTIVE":
        raise ValidationError(
            f"Buyer account is {account.status}",
            details={"account_id": account_id, "status": account.status},
        )
    return account


def issue_invoice(
    *,
    account_id: int,
    voucher_class: str,
    point_of_sale: int,
    lines: list[dict],
    actor_user_id: int | None = None,
    authority=None,
) -> Invoice:
    """
    Issue an invoice end to end.

    lines: [{"sku_id", "quantity", "unit_price_cents"?, "description"?}]
    The SKU's list price is used when a line carries no price.

    Raises ValidationError, SkuNotFound or InsufficientStock before any
    write; AuthorityError (details carry invoice_id) when the authority
    refuses or cannot be reached; PartialCommitInconsistency when the
    invoice was authorized but stock/account effects could not be applied.
    """
    # 1. validate
    voucher_type = invoice_type_code(voucher_class)
    validate_point_of_sale(point_of_sale)
    normalized = _validate_lines(lines)
    buyer = _validate_buyer(account_id)
    buyer_document_code(buyer.document_type)

    rate_bps = current_app.config["INVOICE_TAX_RATE_BPS"]
    if rate_bps not in VAT_ALIQUOT_IDS:
        raise ValidationError("Configured tax rate is not a recognized VAT rate", details={"tax_rate_bps": rate_bps})

    # 2. availability (no mutation)
    units = check_availability(normalized)

    # 3. totals
    for line in normalized:
        if line["unit_price_cents"] is None:
            line["unit_price_cents"] = units[line["sku_id"]].unit_price_cents
    amounts = compute_invoice([(l["quantity"], l["unit_price_cents"]) for l in normalized], rate_bps)

    # 4. persist PENDING
    invoice = Invoice(
        voucher_class=voucher_class,
        voucher_type=voucher_type,
        point_of_sale=point_of_sale,
        issued_on=fiscal_today(current_app.config["FISCAL_TIMEZONE"]),
        account_id=buyer.id,
        buyer_name=buyer.name,
        buyer_document_type=buyer.document_type,
        buyer_document_number=buyer.document_number,
        buyer_address=buyer.address,
        subtotal_cents=amounts.subtotal_cents,
        tax_cents=amounts.tax_cents,
        total_cents=amounts.total_cents,
        tax_rate_bps=rate_bps,
        status="PENDING",
        side_effects_status="PENDING",
        created_by_user_id=actor_user_id,
    )
    db.session.add(invoice)
    db.session.flush()

    for line, line_amounts in zip(normalized, amounts.lines):
        db.session.add(InvoiceLine(
            invoice_id=invoice.id,
            sku_id=line["sku_id"],
            description=line["description"] or units[line["sku_id"]].label,
            quantity=line_amounts.quantity,
            unit_price_cents=line_amounts.unit_price_cents,
            subtotal_cents=line_amounts.subtotal_cents,
            tax_cents=line_amounts.tax_cents,
            total_cents=line_amounts.total_cents,
        ))

    _add_event(invoice, "created", "Invoice created", {
        "subtotal_cents": amounts.subtotal_cents,
        "tax_cents": amounts.tax_cents,
        "total_cents": amounts.total_cents,
        "line_count": len(normalized),
    })
    db.session.commit()
    invoice_id = invoice.id

    # 5. authorize
    client = _authority(authority)
    try:
        number = next_voucher_number(client, point_of_sale, voucher_type)
        result = client.request_authorization(AuthorizationRequest(
            point_of_sale=point_of_sale,
            voucher_type=voucher_type,
            voucher_number=number,
            issue_date=invoice.issued_on,
            buyer_document_type=buyer_document_code(invoice.buyer_document_type),
            buyer_document_number=invoice.buyer_document_number,
            net_cents=invoice.subtotal_cents,
            tax_cents=invoice.tax_cents,
            total_cents=invoice.total_cents,
            tax_rate_bps=invoice.tax_rate_bps,
        ))
    except AuthorityError as exc:
        _mark_error(invoice_id, exc)
        exc.details.setdefault("invoice_id", invoice_id)
        raise

    def _complete():
        inv = _load_locked(invoice_id)
        if inv.status != "PENDING":
            raise InvalidState(
                f"Cannot complete invoice in status {inv.status}",
                details={"invoice_id": invoice_id, "status": inv.status},
            )
        inv.voucher_number = result.voucher_number
        inv.authorization_code = result.authorization_code
        inv.authorization_expires_on = result.authorization_expires_on
        inv.status = "COMPLETED"
        inv.completed_at = utcnow()
        _add_event(inv, "authorization_received", "Authorization received", result.to_payload())
        db.session.commit()
        return inv

    try:
        invoice = run_with_retry(_complete)
    except (ConcurrencyConflict, InvalidState) as cause:
        _record_unused_authorization(invoice_id, voucher_type, result, cause, phase="issue")
        raise PartialCommitInconsistency(
            "Invoice was authorized but the authorization could not be recorded",
            cause,
            details={"invoice_id": invoice_id, "authorization": result.to_payload()},
        ) from cause
    current_app.logger.info(
        "Invoice %s authorized as %s (code %s)", invoice_id, invoice.display_number, invoice.authorization_code
    )

    # 6. side effects
    try:
        _apply_side_effects(invoice_id, actor_user_id=actor_user_id)
    except InvalidState:
        db.session.rollback()
        raise
    except InvoicingError as cause:
        db.session.rollback()
        _record_inconsistency(invoice_id, cause, side_effects_status="FAILED", phase="issue")
        raise PartialCommitInconsistency(
            "Invoice was authorized but its stock/account effects could not be applied",
            cause,
            details={"invoice_id": invoice_id},
        ) from cause

    return get_invoice(invoice_id)


def _mark_error(invoice_id: int, exc: AuthorityError) -> None:
    def _op():
        inv = _load_locked(invoice_id)
        inv.status = "ERROR"
        inv.error_message = exc.message
        _add_event(inv, "error", exc.message, exc.to_dict())
        db.session.commit()

    db.session.rollback()
    run_with_retry(_op)
    current_app.logger.warning("Invoice %s authorization failed: %s", invoice_id, exc.message)


def _record_inconsistency(invoice_id: int, cause: InvoicingError, *, side_effects_status: str, phase: str) -> None:
    def _op():
        inv = _load_locked(invoice_id)
        inv.side_effects_status = side_effects_status
        _add_event(inv, "partial_commit_inconsistency", cause.message, {
            "phase": phase,
            "cause": cause.to_dict(),
        })
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.error(
        "Invoice %s %s side effects failed (%s): %s", invoice_id, phase, cause.kind, cause.message
    )


def _record_unused_authorization(
    invoice_id: int,
    voucher_type: int,
    result,
    cause: InvoicingError,
    *,
    phase: str,
) -> None:
    """
    Keep an authorized voucher that could not be written to its invoice.

    The authority has already numbered it, so the payload goes to the log
    first and then into a 'partial_commit_inconsistency' event.
    """
    authorization = {**result.to_payload(), "voucher_type": voucher_type}
    current_app.logger.error(
        "Invoice %s %s authorization %s (voucher %s-%s) not recorded (%s): %s",
        invoice_id, phase, result.authorization_code, voucher_type, result.voucher_number,
        cause.kind, cause.message,
    )

    def _op():
        inv = _load_locked(invoice_id)
        _add_event(inv, "partial_commit_inconsistency", cause.message, {
            "phase": phase,
            "cause": cause.to_dict(),
            "authorization": authorization,
        })
        db.session.commit()

    db.session.rollback()
    run_with_retry(_op)


def _apply_side_effects(
    invoice_id: int,
    *,
    reverse: bool = False,
    actor_user_id: int | None = None,
    repaired: bool = False,
) -> None:
    """
    Stock + account effects of an invoice as one DB transaction.

    Issuance deducts every line and debits the total; reverse restores
    every line and credits the total. Raises the typed cause and leaves
    nothing written on failure; InvalidState when the effects were already
    settled by another caller.
    """
    if reverse:
        allowed_status, allowed_effects = "VOIDED", ("APPLIED", "REVERSAL_FAILED")
    else:
        allowed_status, allowed_effects = "COMPLETED", ("PENDING", "FAILED")

    def _op():
        inv = _load_locked(invoice_id)
        if inv.status != allowed_status or inv.side_effects_status not in allowed_effects:
            raise InvalidState(
                f"Cannot {'reverse' if reverse else 'apply'} side effects in state "
                f"{inv.status}/{inv.side_effects_status}",
                details={
                    "invoice_id": invoice_id,
                    "status": inv.status,
                    "side_effects_status": inv.side_effects_status,
                },
            )
        sign = 1 if reverse else -1
        reference = f"INVOICE:{inv.id}"
        label = f"{'Void of invoice' if reverse else 'Invoice'} {inv.display_number}"

        changed = []
        for line in inv.lines:
            movement = _adjust_stock_locked(
                sku_id=line.sku_id,
                quantity_delta=sign * line.quantity,
                description=label,
                document_reference=reference,
            )
            changed.append((line.sku.sku, movement.stock_after))

        _post_transaction_locked(
            account_id=inv.account_id,
            direction="CREDIT" if reverse else "DEBIT",
            amount_cents=inv.total_cents,
            description=label,
            invoice_id=inv.id,
            actor_user_id=actor_user_id,
        )

        previous = inv.side_effects_status
        inv.side_effects_status = "REVERSED" if reverse else "APPLIED"
        if repaired:
            _add_event(inv, "side_effects_repaired", f"Side effects repaired ({previous} -> {inv.side_effects_status})", {
                "previous_status": previous,
                "side_effects_status": inv.side_effects_status,
            })
        db.session.commit()
        return changed

    changed = run_with_retry(_op)
    for sku, new_quantity in changed:
        emit_stock_changed(sku, new_quantity)


def void_invoice(
    invoice_id: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
    authority=None,
) -> Invoice:
    """
    Void a COMPLETED invoice with an authorized credit note.

    Raises InvalidState for any other status, including one reached by a
    concurrent void while the credit note was being authorized;
    AuthorityError (invoice left COMPLETED) when the credit note is not
    authorized;
    PartialCommitInconsistency when the invoice was voided but its effects
    could not be reversed.
    """
    invoice = get_invoice(invoice_id)
    if invoice.status != "COMPLETED":
        raise InvalidState(
            f"Cannot void invoice in status {invoice.status}",
            details={"invoice_id": invoice_id, "status": invoice.status},
        )

    credit_note_type = credit_note_type_code(invoice.voucher_class)
    client = _authority(authority)
    try:
        number = next_voucher_number(client, invoice.point_of_sale, credit_note_type)
        result = client.request_authorization(AuthorizationRequest(
            point_of_sale=invoice.point_of_sale,
            voucher_type=credit_note_type,
            voucher_number=number,
            issue_date=fiscal_today(current_app.config["FISCAL_TIMEZONE"]),
            buyer_document_type=buyer_document_code(invoice.buyer_document_type),
            buyer_document_number=invoice.buyer_document_number,
            net_cents=invoice.subtotal_cents,
            tax_cents=invoice.tax_cents,
            total_cents=invoice.total_cents,
            tax_rate_bps=invoice.tax_rate_bps,
            associated_vouchers=(
                AssociatedVoucher(invoice.voucher_type, invoice.point_of_sale, invoice.voucher_number),
            ),
        ))
    except AuthorityError as exc:
        def _failed():
            inv = _load_locked(invoice_id)
            _add_event(inv, "void_failed", exc.message, exc.to_dict())
            db.session.commit()

        db.session.rollback()
        run_with_retry(_failed)
        current_app.logger.warning("Invoice %s void failed: %s", invoice_id, exc.message)
        exc.details.setdefault("invoice_id", invoice_id)
        raise

    def _void():
        inv = _load_locked(invoice_id)
        if inv.status != "COMPLETED":
            raise InvalidState(
                f"Cannot void invoice in status {inv.status}",
                details={
                    "invoice_id": invoice_id,
                    "status": inv.status,
                    "credit_note_number": result.voucher_number,
                },
            )
        inv.status = "VOIDED"
        inv.credit_note_type = credit_note_type
        inv.credit_note_number = result.voucher_number
        inv.credit_note_authorization_code = result.authorization_code
        inv.credit_note_authorization_expires_on = result.authorization_expires_on
        inv.voided_at = utcnow()
        inv.voided_by_user_id = actor_user_id
        inv.void_reason = reason
        _add_event(inv, "voided", reason or "Invoice voided", {
            **result.to_payload(),
            "credit_note_type": credit_note_type,
            "reversal_required": inv.side_effects_status == "APPLIED",
        })
        db.session.commit()
        return inv.side_effects_status

    try:
        side_effects_status = run_with_retry(_void)
    except InvalidState as cause:
        _record_unused_authorization(invoice_id, credit_note_type, result, cause, phase="void")
        raise
    except ConcurrencyConflict as cause:
        _record_unused_authorization(invoice_id, credit_note_type, result, cause, phase="void")
        raise PartialCommitInconsistency(
            "Credit note was authorized but the void could not be recorded",
            cause,
            details={"invoice_id": invoice_id, "authorization": result.to_payload()},
        ) from cause
    current_app.logger.info(
        "Invoice %s voided by credit note %s-%s", invoice_id, credit_note_type, result.voucher_number
    )

    if side_effects_status == "APPLIED":
        try:
            _apply_side_effects(invoice_id, reverse=True, actor_user_id=actor_user_id)
        except InvalidState:
            db.session.rollback()
            raise
        except InvoicingError as cause:
            db.session.rollback()
            _record_inconsistency(invoice_id, cause, side_effects_status="REVERSAL_FAILED", phase="void")
            raise PartialCommitInconsistency(
                "Invoice was voided but its stock/account effects could not be reversed",
                cause,
                details={"invoice_id": invoice_id},
            ) from cause

    return get_invoice(invoice_id)


def repair_side_effects(invoice_id: int, *, actor_user_id: int | None = None) -> Invoice:
    """
    Operator path for recorded inconsistencies.

    COMPLETED/FAILED: apply the issuance effects.
    VOIDED/REVERSAL_FAILED: apply the reversal.
    The typed cause is raised again (nothing written) if it still applies.
    """
    invoice = get_invoice(invoice_id)
    state = (invoice.status, invoice.side_effects_status)
    if state == ("COMPLETED", "FAILED"):
        reverse = False
    elif state == ("VOIDED", "REVERSAL_FAILED"):
        reverse = True
    else:
        raise InvalidState(
            "Invoice has no side effects to repair",
            details={
                "invoice_id": invoice_id,
                "status": invoice.status,
                "side_effects_status": invoice.side_effects_status,
            },
        )

    try:
        _apply_side_effects(invoice_id, reverse=reverse, actor_user_id=actor_user_id, repaired=True)
    except InvoicingError:
        db.session.rollback()
        current_app.logger.warning("Invoice %s side effects repair failed", invoice_id)
        raise

    current_app.logger.info("Invoice %s side effects repaired", invoice_id)
    return get_invoice(invoice_id)
