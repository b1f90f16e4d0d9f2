"""Tests for the ORM immutability listeners on closed batches and ledger rows."""

import pytest
from decimal import Decimal

from src.models import Batch, BatchSourceLink, Lot, LotBatchLink, LotDepletion
from src.services import inventory_ledger_service, lot_service
from src.services.database import session_scope
from src.services.exceptions import ImmutabilityViolation


@pytest.fixture
def lot_with_sale(reference_data, make_closed_batch):
    batch = make_closed_batch(500, 7500000)
    lot = lot_service.create_lot(
        "LOT-IMM", reference_data.product_id, [{"batch_id": batch.id, "weight": 200}]
    )
    inventory_ledger_service.deplete(lot.id, Decimal("20"))
    return batch, lot


class TestClosedBatch:
    def test_update_closed_batch_blocked(self, lot_with_sale):
        batch, _ = lot_with_sale
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.get(Batch, batch.id).notes = "edited after closing"

        with session_scope() as session:
            assert session.get(Batch, batch.id).notes is None

    def test_delete_closed_batch_blocked(self, lot_with_sale):
        batch, _ = lot_with_sale
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.delete(session.get(Batch, batch.id))

    def test_open_batch_can_be_edited(self, reference_data, make_purchase):
        from src.services import batch_service

        txn = make_purchase()
        record = batch_service.open_batch(
            reference_data.raw_product_id, reference_data.shelter_id, [txn]
        )
        with session_scope() as session:
            session.get(Batch, record.id).notes = "moved to box 2"
        with session_scope() as session:
            assert session.get(Batch, record.id).notes == "moved to box 2"


class TestLot:
    def test_composition_fields_blocked(self, lot_with_sale):
        _, lot = lot_with_sale
        with pytest.raises(ImmutabilityViolation) as exc_info:
            with session_scope() as session:
                session.get(Lot, lot.id).unit_cost = Decimal("1")
        assert exc_info.value.details["entity"] == "Lot"

        assert lot_service.get_lot(lot.id).unit_cost == lot.unit_cost

    def test_available_quantity_is_mutable(self, lot_with_sale):
        _, lot = lot_with_sale
        with session_scope() as session:
            session.get(Lot, lot.id).available_quantity = Decimal("150")
        assert lot_service.get_lot(lot.id).available_quantity == Decimal("150")

    def test_lot_delete_blocked(self, lot_with_sale):
        _, lot = lot_with_sale
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.delete(session.get(Lot, lot.id))


class TestAppendOnlyRecords:
    @pytest.mark.parametrize("model", [LotBatchLink, BatchSourceLink, LotDepletion])
    def test_delete_blocked(self, lot_with_sale, model):
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.delete(session.query(model).first())

    def test_link_weight_update_blocked(self, lot_with_sale):
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.query(LotBatchLink).first().weight_contributed = Decimal("1")

    def test_depletion_update_blocked(self, lot_with_sale):
        with pytest.raises(ImmutabilityViolation):
            with session_scope() as session:
                session.query(LotDepletion).first().quantity = Decimal("1")
