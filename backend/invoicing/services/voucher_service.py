# Overview: Voucher numbering and fiscal code tables; the authority is the only source of truth.

from __future__ import annotations

from ..errors import ValidationError


# Invoice voucher class -> authority document-type code
INVOICE_TYPES = {"A": 1, "B": 6, "C": 11}

# Invoice voucher class -> matching credit note code
CREDIT_NOTE_TYPES = {"A": 3, "B": 8, "C": 13}

# Buyer identification -> authority document code
BUYER_DOCUMENT_TYPES = {
    "CUIT": 80,
    "CUIL": 86,
    "CDI": 87,
    "PASSPORT": 94,
    "DNI": 96,
    "CF": 99,  # final consumer, unidentified
}

MIN_POINT_OF_SALE = 1
MAX_POINT_OF_SALE = 99998


def invoice_type_code(voucher_class: str) -> int:
    try:
        return INVOICE_TYPES[voucher_class]
    except KeyError:
        raise ValidationError(
            f"Unknown voucher class {voucher_class!r}",
            details={"voucher_class": voucher_class, "allowed": sorted(INVOICE_TYPES)},
        ) from None


def credit_note_type_code(voucher_class: str) -> int:
    try:
        return CREDIT_NOTE_TYPES[voucher_class]
    except KeyError:
        raise ValidationError(
            f"No credit note defined for voucher class {voucher_class!r}",
            details={"voucher_class": voucher_class},
        ) from None


def buyer_document_code(document_type: str) -> int:
    code = BUYER_DOCUMENT_TYPES.get((document_type or "").upper())
    if code is None:
        raise ValidationError(
            f"Unknown buyer document type {document_type!r}",
            details={"document_type": document_type, "allowed": sorted(BUYER_DOCUMENT_TYPES)},
        )
    return code


def validate_point_of_sale(point_of_sale) -> int:
    if isinstance(point_of_sale, bool) or not isinstance(point_of_sale, int):
        raise ValidationError("point_of_sale must be an integer", details={"point_of_sale": point_of_sale})
    if not MIN_POINT_OF_SALE <= point_of_sale <= MAX_POINT_OF_SALE:
        raise ValidationError(
            f"point_of_sale must be between {MIN_POINT_OF_SALE} and {MAX_POINT_OF_SALE}",
            details={"point_of_sale": point_of_sale},
        )
    return point_of_sale


def next_voucher_number(client, point_of_sale: int, voucher_type: int) -> int:
    """
    Number to request for the next voucher of (point_of_sale, voucher_type).

    Always asks the authority: another process may have advanced the
    sequence, so no local counter is trusted. The number the authority
    returns in its authorization response is the one that gets persisted;
    if two callers race for the same number the authority rejects one.
    """
    return client.get_last_voucher_number(point_of_sale, voucher_type) + 1
