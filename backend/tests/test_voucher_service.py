import pytest

from invoicing.errors import ValidationError
from invoicing.services import voucher_service


class _Authority:
    def __init__(self, last):
        self.last = last
        self.calls = []

    def get_last_voucher_number(self, point_of_sale, voucher_type):
        self.calls.append((point_of_sale, voucher_type))
        return self.last


class TestNextVoucherNumber:

    def test_first_voucher_is_one(self):
        assert voucher_service.next_voucher_number(_Authority(0), 1, 6) == 1

    def test_always_asks_the_authority(self):
        authority = _Authority(41)
        assert voucher_service.next_voucher_number(authority, 3, 1) == 42

        authority.last = 57  # advanced elsewhere
        assert voucher_service.next_voucher_number(authority, 3, 1) == 58
        assert authority.calls == [(3, 1), (3, 1)]


class TestCodeTables:

    @pytest.mark.parametrize("voucher_class,invoice_code,credit_code", [("A", 1, 3), ("B", 6, 8), ("C", 11, 13)])
    def test_voucher_classes(self, voucher_class, invoice_code, credit_code):
        assert voucher_service.invoice_type_code(voucher_class) == invoice_code
        assert voucher_service.credit_note_type_code(voucher_class) == credit_code

    def test_unknown_voucher_class(self):
        with pytest.raises(ValidationError) as exc_info:
            voucher_service.invoice_type_code("X")
        assert exc_info.value.details["voucher_class"] == "X"

    @pytest.mark.parametrize("doc,code", [("CUIT", 80), ("cuil", 86), ("DNI", 96), ("CF", 99), ("PASSPORT", 94)])
    def test_buyer_documents(self, doc, code):
        assert voucher_service.buyer_document_code(doc) == code

    def test_unknown_buyer_document(self):
        with pytest.raises(ValidationError):
            voucher_service.buyer_document_code("LIBRETA")

    @pytest.mark.parametrize("pos", [0, 99999, -1, "1", True, None])
    def test_point_of_sale_out_of_range(self, pos):
        with pytest.raises(ValidationError):
            voucher_service.validate_point_of_sale(pos)

    @pytest.mark.parametrize("pos", [1, 99998])
    def test_point_of_sale_bounds(self, pos):
        assert voucher_service.validate_point_of_sale(pos) == pos
