# Overview: Invoice arithmetic; flat-rate VAT on integer cents with half-up rounding.

from __future__ import annotations

from dataclasses import dataclass


BPS_DENOMINATOR = 10_000


@dataclass(frozen=True)
class LineAmounts:
    quantity: int
    unit_price_cents: int
    subtotal_cents: int
    tax_cents: int
    total_cents: int


@dataclass(frozen=True)
class InvoiceAmounts:
    lines: tuple[LineAmounts, ...]
    subtotal_cents: int
    tax_cents: int
    total_cents: int
    tax_rate_bps: int


def apply_rate_half_up(amount_cents: int, rate_bps: int) -> int:
    """amount * rate, rounded to the nearest cent (half-up)."""
    if amount_cents < 0 or rate_bps < 0:
        raise ValueError("amount and rate must be non-negative")
    return (amount_cents * rate_bps + BPS_DENOMINATOR // 2) // BPS_DENOMINATOR


def compute_line(quantity: int, unit_price_cents: int, rate_bps: int) -> LineAmounts:
    subtotal = quantity * unit_price_cents
    tax = apply_rate_half_up(subtotal, rate_bps)
    return LineAmounts(
        quantity=quantity,
        unit_price_cents=unit_price_cents,
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=subtotal + tax,
    )


def compute_invoice(items: list[tuple[int, int]], rate_bps: int) -> InvoiceAmounts:
    """
    Compute line and aggregate amounts for (quantity, unit_price_cents) pairs.

    Each line is rounded on its own and the invoice tax is the sum of the
    line taxes, so total == subtotal + tax == sum of line totals exactly.
    """
    lines = tuple(compute_line(qty, price, rate_bps) for qty, price in items)
    subtotal = sum(line.subtotal_cents for line in lines)
    tax = sum(line.tax_cents for line in lines)
    return InvoiceAmounts(
        lines=lines,
        subtotal_cents=subtotal,
        tax_cents=tax,
        total_cents=subtotal + tax,
        tax_rate_bps=rate_bps,
    )


def format_amount(cents: int) -> str:
    """Two-decimal wire format: 15000 -> '150.00'."""
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"
