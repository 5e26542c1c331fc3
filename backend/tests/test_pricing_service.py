import pytest

from invoicing.services.pricing_service import (
    apply_rate_half_up,
    compute_invoice,
    compute_line,
    format_amount,
)


class TestRounding:

    @pytest.mark.parametrize(
        "amount,rate,expected",
        [
            (15000, 2100, 3150),
            (1, 2100, 0),       # 0.21 -> 0
            (3, 2100, 1),       # 0.63 -> 1
            (50, 1000, 5),
            (25, 2000, 5),      # exactly 5.0
            (5, 1000, 1),       # 0.5 rounds up
            (0, 2100, 0),
            (12345, 0, 0),
        ],
    )
    def test_half_up(self, amount, rate, expected):
        assert apply_rate_half_up(amount, rate) == expected

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            apply_rate_half_up(-1, 2100)


class TestInvoiceTotals:

    def test_single_line(self):
        line = compute_line(2, 7500, 2100)
        assert line.subtotal_cents == 15000
        assert line.tax_cents == 3150
        assert line.total_cents == 18150

    def test_totals_reconcile(self):
        amounts = compute_invoice([(3, 333), (1, 1999), (7, 101)], 2100)

        assert amounts.subtotal_cents == sum(line.subtotal_cents for line in amounts.lines)
        assert amounts.total_cents == amounts.subtotal_cents + amounts.tax_cents
        assert sum(line.total_cents for line in amounts.lines) == amounts.total_cents

    def test_tax_is_sum_of_line_taxes(self):
        # Each line rounds 0.63 up to 1
        amounts = compute_invoice([(1, 3), (1, 3)], 2100)
        assert [line.tax_cents for line in amounts.lines] == [1, 1]
        assert amounts.tax_cents == 2
        assert amounts.total_cents == 8

    def test_many_small_lines_match_line_totals(self):
        # 0.42 rounds down on every line
        amounts = compute_invoice([(1, 2)] * 10, 2100)
        assert amounts.tax_cents == 0
        assert amounts.total_cents == 20
        assert sum(line.total_cents for line in amounts.lines) == amounts.total_cents


class TestWireFormat:

    @pytest.mark.parametrize(
        "cents,text",
        [(15000, "150.00"), (18150, "181.50"), (5, "0.05"), (0, "0.00"), (-125, "-1.25")],
    )
    def test_two_decimals(self, cents, text):
        assert format_amount(cents) == text
