"""Tests for StockLedger: debit/credit, movement trail, replay and low-stock alerts."""

import pytest
from inventory.stock.ledger import StockUpdate
from inventory.stock.movement import MovementType, StockMovement
from inventory.stock.product import Product, StockStatus
from protean import current_domain
from shared.domain import unit_of_work
from shared.exceptions import ObjectNotFoundError, StockError, ValidationError


def _stock(context, product_id):
    return current_domain.repository_for(Product).get(product_id).stock_quantity


def _movement_count(context, product_id):
    return len(current_domain.repository_for(StockMovement).for_product(product_id))


class TestRegisterProduct:
    def test_initial_stock_is_booked_as_movement(self, context, make_product):
        product = make_product(stock=12)

        assert product.stock_quantity == 12
        [movement] = context.ledger.history(product.id)
        assert movement.movement_type == MovementType.STOCK_IN.value
        assert movement.previous_stock == 0
        assert movement.new_stock == 12
        assert movement.reason == "Initial stock"

    def test_product_without_stock_has_no_movements(self, context, make_product):
        product = make_product(stock=0)

        assert product.stock_status == StockStatus.OUT_OF_STOCK.value
        assert context.ledger.history(product.id) == []

    def test_duplicate_sku_rejected(self, make_product):
        make_product(sku="DIYA-01")
        with pytest.raises(ValidationError) as exc:
            make_product(sku="DIYA-01")
        assert "sku" in exc.value.messages

    def test_negative_price_rejected(self, make_product):
        with pytest.raises(ValidationError):
            make_product(price=-1.0)


class TestDebit:
    def test_debit_reduces_stock_and_records_snapshot(self, context, make_product):
        product = make_product(stock=10)

        movement = context.ledger.debit(product.id, 3, "Order ORD1", order_ref="ORD1", actor="cust-001")

        assert movement.movement_type == MovementType.STOCK_OUT.value
        assert movement.previous_stock == 10
        assert movement.new_stock == 7
        assert movement.order_number == "ORD1"
        assert movement.actor == "cust-001"
        assert _stock(context, product.id) == 7

    def test_debit_beyond_stock_fails_without_writes(self, context, make_product):
        product = make_product(stock=2)

        with pytest.raises(StockError) as exc:
            context.ledger.debit(product.id, 3, "Order ORD1")

        assert exc.value.requested == 3
        assert exc.value.available == 2
        assert _stock(context, product.id) == 2
        assert _movement_count(context, product.id) == 1

    def test_last_unit_can_only_be_taken_once(self, context, make_product):
        product = make_product(stock=1)

        context.ledger.debit(product.id, 1, "Order A")
        with pytest.raises(StockError):
            context.ledger.debit(product.id, 1, "Order B")

        assert _stock(context, product.id) == 0

    def test_debit_to_zero_marks_out_of_stock(self, context, make_product):
        product = make_product(stock=2)

        context.ledger.debit(product.id, 2, "Order ORD1")

        assert current_domain.repository_for(Product).get(product.id).stock_status == StockStatus.OUT_OF_STOCK.value

    def test_debit_unknown_product(self, context):
        with pytest.raises(ObjectNotFoundError):
            context.ledger.debit("missing", 1, "Order ORD1")

    def test_fractional_quantity_rejected(self, context, make_product):
        product = make_product(stock=5)

        with pytest.raises(ValidationError):
            context.ledger.debit(product.id, 1.5, "Order ORD1")
        assert _movement_count(context, product.id) == 1

    def test_debit_joins_callers_unit_of_work(self, context, make_product):
        product = make_product(stock=5)

        with pytest.raises(RuntimeError):
            with unit_of_work():
                context.ledger.debit(product.id, 2, "Order ORD1")
                raise RuntimeError("boom")

        assert _stock(context, product.id) == 5
        assert _movement_count(context, product.id) == 1


class TestCreditAndCorrections:
    def test_credit_restores_exact_quantity(self, context, make_product):
        product = make_product(stock=5)
        context.ledger.debit(product.id, 4, "Order ORD1")

        movement = context.ledger.credit(product.id, 4, "Order ORD1 cancelled", order_ref="ORD1")

        assert movement.previous_stock == 1
        assert movement.new_stock == 5

    def test_credit_unknown_product(self, context):
        with pytest.raises(ObjectNotFoundError):
            context.ledger.credit("missing", 1, "Restock")

    def test_return_is_its_own_movement_type(self, context, make_product):
        product = make_product(stock=5)

        movement = context.ledger.record_return(product.id, 1, order_ref="ORD1")

        assert movement.movement_type == MovementType.RETURN.value
        assert movement.new_stock == 6

    def test_damaged_write_off_cannot_go_negative(self, context, make_product):
        product = make_product(stock=1)

        with pytest.raises(StockError):
            context.ledger.write_off_damaged(product.id, 2)

        movement = context.ledger.write_off_damaged(product.id, 1, reason="Cracked in transit")
        assert movement.movement_type == MovementType.DAMAGED.value
        assert movement.new_stock == 0

    def test_adjust_sets_counted_value(self, context, make_product):
        product = make_product(stock=10)

        movement = context.ledger.adjust(product.id, 4, "Cycle count")

        assert movement.movement_type == MovementType.ADJUSTMENT.value
        assert movement.quantity == 6
        assert movement.previous_stock == 10
        assert movement.new_stock == 4

    @pytest.mark.parametrize("value", [-1, 2.5, True])
    def test_adjust_rejects_invalid_counts(self, context, make_product, value):
        product = make_product(stock=10)
        with pytest.raises(ValidationError):
            context.ledger.adjust(product.id, value, "Cycle count")


class TestHistoryAndReplay:
    def test_every_change_appends_exactly_one_movement(self, context, make_product):
        product = make_product(stock=10)

        context.ledger.debit(product.id, 3, "Order A")
        context.ledger.credit(product.id, 1, "Order A partial cancel")
        context.ledger.adjust(product.id, 20, "Recount")
        context.ledger.write_off_damaged(product.id, 2)

        assert _movement_count(context, product.id) == 5

    def test_history_is_most_recent_first_and_limited(self, context, make_product):
        product = make_product(stock=10)
        context.ledger.debit(product.id, 1, "Order A")
        context.ledger.debit(product.id, 1, "Order B")

        history = context.ledger.history(product.id, limit=2)

        assert [m.reason for m in history] == ["Order B", "Order A"]

    def test_history_unknown_product(self, context):
        with pytest.raises(ObjectNotFoundError):
            context.ledger.history("missing")

    def test_replay_reproduces_current_stock(self, context, make_product):
        product = make_product(stock=10)
        context.ledger.debit(product.id, 3, "Order A")
        context.ledger.credit(product.id, 1, "Order A partial cancel")
        context.ledger.adjust(product.id, 20, "Recount")
        context.ledger.write_off_damaged(product.id, 2)

        result = context.ledger.replay(product.id)

        assert result.consistent
        assert result.movements == 5
        assert result.replayed_quantity == 18
        assert result.current_quantity == 18

    def test_replay_detects_stock_written_outside_the_ledger(self, context, make_product):
        product = make_product(stock=10)
        products = current_domain.repository_for(Product)
        stored = products.get(product.id)
        stored.stock_quantity = 99
        products.add(stored)

        result = context.ledger.replay(product.id)

        assert not result.consistent
        assert result.replayed_quantity == 10
        assert result.current_quantity == 99


class TestAvailability:
    def test_reports_each_kind_of_shortfall(self, context, make_product):
        plenty = make_product(name="Plenty", stock=10)
        scarce = make_product(name="Scarce", stock=1)
        retired = make_product(name="Retired", stock=10)
        products = current_domain.repository_for(Product)
        stored = products.get(retired.id)
        stored.is_active = False
        products.add(stored)

        report = context.ledger.check_availability(
            [(plenty.id, 2), (scarce.id, 2), (retired.id, 1), ("missing", 1)]
        )

        reasons = {s.product_id: s.reason for s in report.shortfalls}
        assert plenty.id not in reasons
        assert reasons[scarce.id] == "Insufficient stock"
        assert reasons[retired.id] == "Product is not available"
        assert reasons["missing"] == "Product not found"

    def test_repeated_lines_are_summed(self, context, make_product):
        product = make_product(stock=3)

        report = context.ledger.check_availability([(product.id, 2), (product.id, 2)])

        [shortfall] = report.shortfalls
        assert shortfall.requested == 4
        assert shortfall.available == 3

    def test_low_and_out_of_stock_listings(self, context, make_product):
        low = make_product(stock=2, threshold=5)
        empty = make_product(stock=1, threshold=5)
        healthy = make_product(stock=50, threshold=5)
        context.ledger.debit(empty.id, 1, "Order A")

        low_ids = [p.id for p in context.ledger.low_stock_products()]
        out_ids = [p.id for p in context.ledger.out_of_stock_products()]

        assert low_ids == [low.id]
        assert out_ids == [empty.id]
        assert healthy.id not in low_ids + out_ids


class TestLowStockAlerts:
    def test_alert_emitted_when_debit_crosses_threshold(self, context, make_product, stock_alerts):
        product = make_product(stock=10, threshold=5)

        context.ledger.debit(product.id, 6, "Order A")

        [alert] = stock_alerts.alerts
        assert alert["product_id"] == product.id
        assert alert["stock_quantity"] == 4
        assert alert["threshold"] == 5

    def test_no_alert_when_stock_stays_healthy(self, context, make_product, stock_alerts):
        product = make_product(stock=10, threshold=5)

        context.ledger.debit(product.id, 2, "Order A")

        assert stock_alerts.alerts == []

    def test_no_alert_when_unit_of_work_rolls_back(self, context, make_product, stock_alerts):
        product = make_product(stock=10, threshold=5)

        with pytest.raises(RuntimeError):
            with unit_of_work():
                context.ledger.debit(product.id, 6, "Order A")
                raise RuntimeError("checkout failed")

        assert stock_alerts.alerts == []

    def test_rolled_back_alert_does_not_fire_on_next_commit(self, context, make_product, stock_alerts):
        first = make_product(stock=10, threshold=5)
        second = make_product(stock=10, threshold=5)

        with pytest.raises(RuntimeError):
            with unit_of_work():
                context.ledger.debit(first.id, 6, "Order A")
                raise RuntimeError("checkout failed")
        with unit_of_work():
            context.ledger.debit(second.id, 6, "Order B")

        assert len(stock_alerts.alerts) == 1
        assert stock_alerts.alerts[0]["product_id"] == str(second.id)

    def test_failing_alert_sink_does_not_fail_debit(self, context, make_product, stock_alerts, monkeypatch):
        product = make_product(stock=10, threshold=5)

        def broken(**kwargs):
            raise ConnectionError("alert service down")

        monkeypatch.setattr(stock_alerts, "low_stock", broken)

        movement = context.ledger.debit(product.id, 6, "Order A")
        assert movement.new_stock == 4


class TestBulkUpdate:
    def test_failures_do_not_abort_other_updates(self, context, make_product):
        first = make_product(stock=5)
        second = make_product(stock=1)

        result = context.ledger.bulk_update(
            [
                StockUpdate(first.id, 10, MovementType.STOCK_IN, "Supplier delivery"),
                StockUpdate(second.id, 5, MovementType.STOCK_OUT, "Marketplace sync"),
                StockUpdate(first.id, 3, MovementType.DAMAGED, "Water damage"),
            ],
            actor="admin",
        )

        assert [r["new_stock"] for r in result.results] == [15, 12]
        [error] = result.errors
        assert error["product_id"] == second.id
        assert "Insufficient stock" in error["error"]
        assert _stock(context, second.id) == 1
