import pytest

from invoicing.errors import InsufficientStock, SkuNotFound, ValidationError
from invoicing.models import StockKeepingUnit, StockMovement
from invoicing.services import inventory_service
from invoicing.services.notifications import stock_changed


class TestCreateSku:

    def test_initial_stock_is_journaled(self, db_session, make_sku):
        unit = make_sku(stock=7, sku="tee-m-blk", size="M", color="Black")

        assert unit.sku == "TEE-M-BLK"
        movements = StockMovement.query.filter_by(sku_id=unit.id).all()
        assert len(movements) == 1
        assert movements[0].direction == "IN"
        assert movements[0].quantity == 7
        assert inventory_service.verify_stock_ledger(unit.id)["consistent"]

    def test_zero_stock_has_no_movement(self, db_session, make_sku):
        unit = make_sku(stock=0)
        assert StockMovement.query.filter_by(sku_id=unit.id).count() == 0

    def test_duplicate_code_rejected(self, db_session, make_sku):
        make_sku(sku="DUP")
        with pytest.raises(ValidationError):
            make_sku(sku="dup")

    def test_lookup_by_code(self, db_session, make_sku):
        unit = make_sku(sku="LOOKUP-1")
        assert inventory_service.get_sku_by_code(" lookup-1 ").id == unit.id
        with pytest.raises(SkuNotFound):
            inventory_service.get_sku_by_code("MISSING")


class TestAdjustStock:

    def test_deduct_and_restore(self, db_session, make_sku):
        unit = make_sku(stock=5)

        out = inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-3, description="Sale")
        assert out.direction == "OUT"
        assert out.stock_after == 2

        back = inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=1, document_reference="RET-1")
        assert back.direction == "IN"
        assert db_session.get(StockKeepingUnit, unit.id).stock_quantity == 3

        ledger = inventory_service.verify_stock_ledger(unit.id)
        assert ledger["consistent"]
        assert ledger["movement_count"] == 3

    def test_cannot_go_negative(self, db_session, make_sku):
        unit = make_sku(stock=1)

        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-2)

        assert exc_info.value.details["sku_id"] == unit.id
        db_session.rollback()
        assert db_session.get(StockKeepingUnit, unit.id).stock_quantity == 1
        assert StockMovement.query.filter_by(sku_id=unit.id).count() == 1

    def test_zero_delta_rejected(self, db_session, make_sku):
        unit = make_sku()
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=0)

    def test_unknown_sku(self, db_session):
        with pytest.raises(SkuNotFound) as exc_info:
            inventory_service.adjust_stock(sku_id=999, quantity_delta=1)
        assert exc_info.value.details == {"sku_id": 999}

    def test_movements_newest_first(self, db_session, make_sku):
        unit = make_sku(stock=5)
        inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-1)
        inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-1)

        movements = inventory_service.list_movements(sku_id=unit.id)
        assert [m.stock_after for m in movements] == [3, 4, 5]


class TestAvailability:

    def test_quantities_aggregate_per_sku(self, db_session, make_sku):
        unit = make_sku(stock=3)

        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.check_availability([
                {"sku_id": unit.id, "quantity": 2},
                {"sku_id": unit.id, "quantity": 2},
            ])
        assert exc_info.value.details["requested_quantity"] == 4

    def test_no_mutation(self, db_session, make_sku):
        unit = make_sku(stock=3)
        units = inventory_service.check_availability([{"sku_id": unit.id, "quantity": 3}])

        assert units[unit.id].stock_quantity == 3
        assert StockMovement.query.filter_by(sku_id=unit.id).count() == 1

    def test_inactive_sku_not_found(self, db_session, make_sku):
        unit = make_sku()
        unit.is_active = False
        db_session.commit()

        with pytest.raises(SkuNotFound):
            inventory_service.check_availability([{"sku_id": unit.id, "quantity": 1}])


class TestStockChangedNotification:

    def test_emitted_after_commit(self, db_session, make_sku):
        unit = make_sku(stock=4, sku="NOTIFY-1")
        received = []

        def receiver(sku, new_quantity):
            received.append((sku, new_quantity))

        with stock_changed.connected_to(receiver):
            inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-1)

        assert received == [("NOTIFY-1", 3)]

    def test_failing_receiver_does_not_fail_adjustment(self, db_session, make_sku):
        unit = make_sku(stock=4)
        received = []

        def broken(sku, new_quantity):
            raise RuntimeError("catalog mirror down")

        def healthy(sku, new_quantity):
            received.append(new_quantity)

        with stock_changed.connected_to(broken), stock_changed.connected_to(healthy):
            movement = inventory_service.adjust_stock(sku_id=unit.id, quantity_delta=-2)

        assert movement.stock_after == 2
        assert received == [2]
        assert db_session.get(StockKeepingUnit, unit.id).stock_quantity == 2
