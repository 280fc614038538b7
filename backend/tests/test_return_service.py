from decimal import Decimal

import pytest

from ceramerp.extensions import db
from ceramerp.models import Brand, CashTransaction, Customer, Return
from ceramerp.services import accounting_service, inventory_service, order_service, purchasing_service, return_service
from ceramerp.services.errors import InsufficientStock, InvalidStateTransition
from ceramerp.services.state_machine import PurchaseReturnStatus, ReturnStatus


def balance_of(model, entity_id):
    db.session.expire_all()
    return db.session.get(model, entity_id).current_balance


def rows_for(reference_type, reference_id):
    return accounting_service.list_cash_transactions(reference_type=reference_type, reference_id=reference_id)


@pytest.fixture
def confirmed_order(db_session, stocked_tile, warehouse, wholesale_customer):
    """Wholesale order: 2 BOX at 1000, unpaid, confirmed (balance 2000, on hand 92.8)."""
    order = order_service.create_order(
        warehouse_id=warehouse.id,
        customer_id=wholesale_customer.id,
        items=[{"product_id": stocked_tile.id, "quantity": 2, "unit_code": "BOX"}],
    )
    return order_service.confirm_order(order.id)


@pytest.fixture
def received_po(db_session, tile, brand, warehouse):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[{"product_id": tile.id, "quantity": 20}],
    )
    purchasing_service.post_goods_receipt(
        po.id, items=[{"purchase_order_item_id": po.items[0].id, "quantity": 20}]
    )
    return po


class TestCustomerReturns:
    """Customer returns: approval restocks and credits."""

    def test_pending_return_has_no_effects(self, db_session, confirmed_order, stocked_tile, warehouse, read_stock):
        doc = return_service.create_return(
            order_id=confirmed_order.id,
            items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX"}],
        )

        assert doc.status == ReturnStatus.PENDING.value
        assert doc.return_number.startswith("RET-")
        assert doc.warehouse_id == warehouse.id
        assert doc.customer_id == confirmed_order.customer_id
        assert doc.items[0].stock_quantity == Decimal("3.6")
        assert doc.total_amount == Decimal("1000.00")
        assert read_stock(stocked_tile.id, warehouse.id).quantity_on_hand == Decimal("92.8")
        assert rows_for(return_service.REFERENCE_RETURN, doc.id) == []

    def test_approval_restocks_refunds_and_credits_customer(
        self, db_session, confirmed_order, stocked_tile, warehouse, wholesale_customer, read_stock
    ):
        doc = return_service.create_return(
            order_id=confirmed_order.id,
            items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX"}],
        )
        doc = return_service.approve_return(doc.id, actor_user_id=3)

        assert doc.status == ReturnStatus.APPROVED.value
        assert doc.approved_by_user_id == 3
        assert read_stock(stocked_tile.id, warehouse.id).quantity_on_hand == Decimal("96.4")
        assert balance_of(Customer, wholesale_customer.id) == Decimal("1000.00")
        rows = rows_for(return_service.REFERENCE_RETURN, doc.id)
        assert [(r.transaction_type, r.amount) for r in rows] == [
            (accounting_service.TX_RETOUR_VENTE, Decimal("-1000.00"))
        ]

    def test_approved_return_is_final(self, db_session, confirmed_order, stocked_tile):
        doc = return_service.create_return(
            order_id=confirmed_order.id,
            items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX"}],
        )
        return_service.approve_return(doc.id)

        with pytest.raises(InvalidStateTransition):
            return_service.approve_return(doc.id)
        with pytest.raises(InvalidStateTransition):
            return_service.reject_return(doc.id)
        with pytest.raises(InvalidStateTransition):
            return_service.delete_return(doc.id)
        assert db_session.query(CashTransaction).filter_by(reference_type="RETURN").count() == 1

    def test_retail_return_leaves_balance_alone(self, db_session, stocked_tile, warehouse, retail_customer, read_stock):
        doc = return_service.create_return(
            customer_id=retail_customer.id,
            warehouse_id=warehouse.id,
            items=[{"product_id": stocked_tile.id, "quantity": 2, "unit_code": "SQM"}],
        )
        assert doc.total_amount == Decimal("2000.00")

        return_service.approve_return(doc.id)

        assert balance_of(Customer, retail_customer.id) == Decimal("0")
        assert read_stock(stocked_tile.id, warehouse.id).quantity_on_hand == Decimal("102")

    def test_return_of_consigned_sale_goes_back_to_the_factory_key(
        self, db_session, consigned_tile, factory, warehouse, read_stock
    ):
        order = order_service.create_order(
            warehouse_id=warehouse.id,
            items=[{"product_id": consigned_tile.id, "quantity": 2, "unit_code": "BOX"}],
        )
        order_service.confirm_order(order.id)

        doc = return_service.create_return(
            order_id=order.id,
            items=[{"product_id": consigned_tile.id, "quantity": 1, "unit_code": "BOX"}],
        )
        return_service.approve_return(doc.id)

        consigned = read_stock(
            consigned_tile.id, warehouse.id,
            ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT, factory_id=factory.id,
        )
        assert consigned.quantity_on_hand == Decimal("46.4")
        assert read_stock(consigned_tile.id, warehouse.id) is None

    def test_rejected_return_moves_nothing(self, db_session, confirmed_order, stocked_tile, warehouse, read_stock):
        doc = return_service.create_return(
            order_id=confirmed_order.id,
            items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX", "unit_price": 900}],
        )
        doc = return_service.reject_return(doc.id)

        assert doc.status == ReturnStatus.REJECTED.value
        assert doc.rejected_at is not None
        assert read_stock(stocked_tile.id, warehouse.id).quantity_on_hand == Decimal("92.8")

    def test_pending_return_can_be_deleted(self, db_session, confirmed_order, stocked_tile):
        doc = return_service.create_return(
            order_id=confirmed_order.id,
            items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX"}],
        )
        return_service.delete_return(doc.id)
        assert db_session.query(Return).count() == 0

    def test_unlinked_return_needs_a_warehouse(self, db_session, stocked_tile):
        with pytest.raises(ValueError):
            return_service.create_return(items=[{"product_id": stocked_tile.id, "quantity": 1}])


class TestPurchaseReturns:
    """Supplier returns: approval issues stock and lowers the payable."""

    def test_purchase_return_approval_issues_stock_and_lowers_payable(
        self, db_session, received_po, tile, brand, warehouse, read_stock
    ):
        doc = return_service.create_purchase_return(
            purchase_order_id=received_po.id,
            items=[{"product_id": tile.id, "quantity": 5}],
            reason="Casse transport",
        )
        assert doc.brand_id == brand.id
        assert doc.total_amount == Decimal("3500.00")
        assert balance_of(Brand, brand.id) == Decimal("14000.00")

        doc = return_service.approve_purchase_return(doc.id)

        assert doc.status == PurchaseReturnStatus.APPROVED.value
        assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("15")
        assert balance_of(Brand, brand.id) == Decimal("10500.00")
        rows = rows_for(return_service.REFERENCE_PURCHASE_RETURN, doc.id)
        assert [(r.transaction_type, r.amount) for r in rows] == [
            (accounting_service.TX_RETOUR_ACHAT, Decimal("3500.00"))
        ]

    def test_purchase_return_beyond_stock_rolls_back(self, db_session, received_po, tile, brand, warehouse, read_stock):
        doc = return_service.create_purchase_return(
            purchase_order_id=received_po.id,
            items=[{"product_id": tile.id, "quantity": 50}],
        )

        with pytest.raises(InsufficientStock):
            return_service.approve_purchase_return(doc.id)

        assert return_service.get_purchase_return(doc.id).status == PurchaseReturnStatus.PENDING.value
        assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("20")
        assert balance_of(Brand, brand.id) == Decimal("14000.00")
        assert rows_for(return_service.REFERENCE_PURCHASE_RETURN, doc.id) == []

    def test_cancelled_purchase_return_cannot_be_approved(self, db_session, received_po, tile):
        doc = return_service.create_purchase_return(
            purchase_order_id=received_po.id,
            items=[{"product_id": tile.id, "quantity": 1}],
        )
        doc = return_service.cancel_purchase_return(doc.id)
        assert doc.status == PurchaseReturnStatus.CANCELLED.value

        with pytest.raises(InvalidStateTransition):
            return_service.approve_purchase_return(doc.id)
        with pytest.raises(InvalidStateTransition):
            return_service.delete_purchase_return(doc.id)
