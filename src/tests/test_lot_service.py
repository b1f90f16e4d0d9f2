"""Tests for lot consolidation.

Covers create_lot() validation order, weighted-average costing,
allocation limits (including concurrent consolidations against the same
batch), lot codes and lot queries.
"""

import threading

import pytest
from decimal import Decimal

from src.models import Lot, LotBatchLink
from src.services import batch_service, lot_service
from src.services.database import session_scope
from src.services.dto import BatchAllocation, BatchClosure, PaginationParams
from src.services.exceptions import (
    BatchNotClosed,
    BatchNotEligible,
    ConflictError,
    DuplicateLotCode,
    EmptyLot,
    InvalidQuantity,
    NotFoundError,
    OverAllocated,
    ValidationError,
)


# =============================================================================
# Helpers
# =============================================================================


def _row_counts():
    with session_scope() as session:
        return session.query(Lot).count(), session.query(LotBatchLink).count()


@pytest.fixture
def batch_a(make_closed_batch):
    """500 kg at 15000 per kg."""
    return make_closed_batch(500, 7500000)


@pytest.fixture
def batch_b(make_closed_batch):
    """300 kg at 16000 per kg."""
    return make_closed_batch(300, 4800000, farmer_indexes=(1,))


# =============================================================================
# Costing
# =============================================================================


class TestWeightedAverageCost:
    """Tests for the lot unit cost."""

    def test_weighted_average_of_two_batches(self, reference_data, batch_a, batch_b):
        """500 kg at 15000 + 300 kg at 16000 -> 800 kg at 15375."""
        lot = lot_service.create_lot(
            "LOT-A",
            reference_data.product_id,
            [
                BatchAllocation(batch_id=batch_a.id, weight=Decimal("500")),
                BatchAllocation(batch_id=batch_b.id, weight=Decimal("300")),
            ],
        )

        assert lot.quantity == Decimal("800")
        assert lot.available_quantity == Decimal("800")
        assert lot.unit_cost == Decimal("15375")

    def test_not_a_simple_average(self, reference_data, batch_a, batch_b):
        """Unequal contributions are weighted, not averaged per batch."""
        lot = lot_service.create_lot(
            "LOT-B",
            reference_data.product_id,
            [
                {"batch_id": batch_a.id, "weight": "100"},
                {"batchId": batch_b.id, "weight": 300},
            ],
        )
        # (100*15000 + 300*16000) / 400
        assert lot.unit_cost == Decimal("15750")
        assert lot.unit_cost != (Decimal("15000") + Decimal("16000")) / 2

    def test_weighted_unit_cost_helper(self):
        assert lot_service.weighted_unit_cost(
            [(Decimal("500"), Decimal("15000")), (Decimal("300"), Decimal("16000"))]
        ) == Decimal("15375.0000")

    def test_persisted_values_match(self, reference_data, batch_a, batch_b):
        created = lot_service.create_lot(
            "LOT-C",
            reference_data.product_id,
            [
                BatchAllocation(batch_id=batch_a.id, weight=Decimal("500")),
                BatchAllocation(batch_id=batch_b.id, weight=Decimal("300")),
            ],
        )
        loaded = lot_service.get_lot(created.id)
        assert loaded.unit_cost == Decimal("15375")
        assert [(a.batch_id, a.weight_contributed) for a in loaded.allocations] == [
            (batch_a.id, Decimal("500")),
            (batch_b.id, Decimal("300")),
        ]


# =============================================================================
# Validation
# =============================================================================


class TestCreateLotValidation:
    """Tests for create_lot() rejections; none of them may write rows."""

    def test_empty_allocations(self, reference_data):
        with pytest.raises(EmptyLot):
            lot_service.create_lot("LOT-E", reference_data.product_id, [])
        assert _row_counts() == (0, 0)

    def test_zero_total_weight(self, reference_data, batch_a):
        with pytest.raises(EmptyLot):
            lot_service.create_lot(
                "LOT-E", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 0}]
            )
        assert _row_counts() == (0, 0)

    def test_negative_weight(self, reference_data, batch_a):
        with pytest.raises(InvalidQuantity):
            lot_service.create_lot(
                "LOT-N", reference_data.product_id, [{"batch_id": batch_a.id, "weight": -1}]
            )

    def test_batch_not_closed(self, reference_data, make_purchase):
        batch = batch_service.open_batch(
            reference_data.raw_product_id, reference_data.shelter_id, [make_purchase()]
        )
        with pytest.raises(BatchNotEligible) as exc_info:
            lot_service.create_lot(
                "LOT-X", reference_data.raw_product_id, [{"batch_id": batch.id, "weight": 1}]
            )
        assert exc_info.value.batch_id == batch.id
        assert _row_counts() == (0, 0)

    def test_batch_of_other_product(self, reference_data, batch_a):
        with pytest.raises(BatchNotEligible):
            lot_service.create_lot(
                "LOT-X", reference_data.raw_product_id, [{"batch_id": batch_a.id, "weight": 1}]
            )

    def test_missing_batch(self, reference_data):
        with pytest.raises(BatchNotEligible):
            lot_service.create_lot(
                "LOT-X", reference_data.product_id, [{"batch_id": 9999, "weight": 1}]
            )

    def test_unknown_product(self, reference_data, batch_a):
        with pytest.raises(NotFoundError):
            lot_service.create_lot("LOT-X", 9999, [{"batch_id": batch_a.id, "weight": 1}])

    def test_over_allocation_after_full_use(self, reference_data, batch_a):
        """A fully allocated batch rejects any further weight and writes nothing."""
        lot_service.create_lot(
            "LOT-1", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 500}]
        )
        assert _row_counts() == (1, 1)

        with pytest.raises(OverAllocated) as exc_info:
            lot_service.create_lot(
                "LOT-2", reference_data.product_id, [{"batch_id": batch_a.id, "weight": "0.001"}]
            )

        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.remaining == Decimal("0")
        assert exc_info.value.to_dict()["remaining"] == "0.000"
        assert _row_counts() == (1, 1)

    def test_merged_duplicates_checked_together(self, reference_data, batch_a):
        """Repeated batch ids are summed before the allocation check."""
        with pytest.raises(OverAllocated):
            lot_service.create_lot(
                "LOT-M",
                reference_data.product_id,
                [
                    {"batch_id": batch_a.id, "weight": 300},
                    {"batch_id": batch_a.id, "weight": 300},
                ],
            )
        assert _row_counts() == (0, 0)

    def test_partial_allocations_accumulate(self, reference_data, batch_a):
        lot_service.create_lot("LOT-1", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 200}])
        lot_service.create_lot("LOT-2", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 300}])
        assert lot_service.remaining_allocatable(batch_a.id) == Decimal("0")

    def test_duplicate_lot_code(self, reference_data, batch_a):
        lot_service.create_lot("LOT-D", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 100}])
        with pytest.raises(DuplicateLotCode):
            lot_service.create_lot(
                "LOT-D", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 100}]
            )
        assert _row_counts() == (1, 1)

    def test_eligibility_checked_before_allocation(self, reference_data, batch_a, make_purchase):
        """BatchNotEligible wins over OverAllocated in the same request."""
        open_batch = batch_service.open_batch(
            reference_data.raw_product_id, reference_data.shelter_id, [make_purchase()]
        )
        with pytest.raises(BatchNotEligible):
            lot_service.create_lot(
                "LOT-O",
                reference_data.product_id,
                [
                    {"batch_id": batch_a.id, "weight": 9999},
                    {"batch_id": open_batch.id, "weight": 1},
                ],
            )

    def test_allocation_checked_before_lot_code(self, reference_data, batch_a):
        """OverAllocated wins over DuplicateLotCode in the same request."""
        lot_service.create_lot("LOT-D", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 500}])
        with pytest.raises(OverAllocated):
            lot_service.create_lot(
                "LOT-D", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 1}]
            )

    def test_blank_lot_code(self, reference_data, batch_a):
        with pytest.raises(ValidationError):
            lot_service.create_lot("   ", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 1}])

    def test_malformed_allocation(self, reference_data):
        with pytest.raises(ValidationError):
            lot_service.create_lot("LOT-X", reference_data.product_id, [{"weight": 1}])


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrentConsolidation:
    """Concurrent create_lot() calls against the same batch."""

    def test_concurrent_lots_never_over_allocate(self, file_reference_data, file_make_closed_batch):
        """Of several 300 kg requests against a 500 kg batch, exactly one succeeds."""
        batch = file_make_closed_batch(500, 7500000)
        barrier = threading.Barrier(4)
        outcomes = []
        lock = threading.Lock()

        def consolidate(n):
            barrier.wait()
            try:
                lot_service.create_lot(
                    f"LOT-T{n}",
                    file_reference_data.product_id,
                    [{"batch_id": batch.id, "weight": 300}],
                )
                result = "ok"
            except OverAllocated:
                result = "over"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=consolidate, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["ok", "over", "over", "over"]
        assert lot_service.remaining_allocatable(batch.id) == Decimal("200")
        with session_scope() as session:
            total = sum(
                link.weight_contributed
                for link in session.query(LotBatchLink).filter_by(batch_id=batch.id)
            )
        assert total <= Decimal("500")


# =============================================================================
# Codes and queries
# =============================================================================


class TestLotCodesAndQueries:
    """Tests for generated codes, lookups, listing and price suggestions."""

    def test_generated_lot_code(self, reference_data, batch_a):
        first = lot_service.create_lot(None, reference_data.product_id, [{"batch_id": batch_a.id, "weight": 100}])
        second = lot_service.create_lot(None, reference_data.product_id, [{"batch_id": batch_a.id, "weight": 100}])
        year = first.created_at.year
        assert first.lot_code == f"LOT-{year}-001"
        assert second.lot_code == f"LOT-{year}-002"

    def test_generate_lot_code_for_year(self, test_db):
        assert lot_service.generate_lot_code(year=2024) == "LOT-2024-001"

    def test_get_lot_by_code(self, reference_data, batch_a):
        created = lot_service.create_lot("LOT-Q", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 10}])
        assert lot_service.get_lot_by_code("LOT-Q").id == created.id
        with pytest.raises(NotFoundError):
            lot_service.get_lot_by_code("LOT-NOPE")

    def test_get_unknown_lot(self, test_db):
        with pytest.raises(NotFoundError):
            lot_service.get_lot(9999)

    def test_remaining_requires_closed_batch(self, reference_data, make_purchase):
        batch = batch_service.open_batch(
            reference_data.raw_product_id, reference_data.shelter_id, [make_purchase()]
        )
        with pytest.raises(BatchNotClosed):
            lot_service.remaining_allocatable(batch.id)

    def test_list_lots_paginated(self, reference_data, batch_a):
        for n in range(3):
            lot_service.create_lot(
                f"LOT-P{n}", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 10}]
            )
        result = lot_service.list_lots(pagination=PaginationParams(page=1, per_page=2))
        assert result.total == 3
        assert len(result.items) == 2
        assert result.pages == 2
        assert result.has_next

    def test_list_available_only(self, reference_data, batch_a):
        from src.services import inventory_ledger_service

        sold_out = lot_service.create_lot("LOT-S", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 10}])
        kept = lot_service.create_lot("LOT-K", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 10}])
        inventory_ledger_service.deplete(sold_out.id, Decimal("10"))

        result = lot_service.list_lots(available_only=True)
        assert [lot.id for lot in result.items] == [kept.id]

    def test_suggest_sale_price(self, reference_data, batch_a, batch_b):
        lot = lot_service.create_lot(
            "LOT-$",
            reference_data.product_id,
            [{"batch_id": batch_a.id, "weight": 500}, {"batch_id": batch_b.id, "weight": 300}],
        )
        suggestion = lot_service.suggest_sale_price(lot.id)
        # 15375 * 1.25 = 19218.75 -> 19219
        assert suggestion.suggested_price == Decimal("19219")
        assert suggestion.margin == Decimal("0.25")

        assert lot_service.suggest_sale_price(lot.id, margin="0.1").suggested_price == Decimal("16913")

    def test_negative_margin_rejected(self, reference_data, batch_a):
        lot = lot_service.create_lot("LOT-M", reference_data.product_id, [{"batch_id": batch_a.id, "weight": 1}])
        with pytest.raises(ValidationError):
            lot_service.suggest_sale_price(lot.id, margin="-0.5")


class TestBatchClosureFeedsLots:
    """Closed batches become allocatable; their figures flow into the lot."""

    def test_reject_weight_is_allocatable(self, reference_data, make_purchase):
        txn = make_purchase(quantity="600", price_per_unit="12500")
        batch = batch_service.open_batch(reference_data.raw_product_id, reference_data.shelter_id, [txn])
        batch_service.advance_batch(batch.id)
        batch_service.advance_batch(
            batch.id,
            BatchClosure(
                output_weight=Decimal("450"),
                reject_weight=Decimal("50"),
                product_id=reference_data.product_id,
            ),
        )
        assert lot_service.remaining_allocatable(batch.id) == Decimal("500")
