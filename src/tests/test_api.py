"""Tests for the HTTP surface.

Drives the Flask app through its test client against the in-memory
database and checks status codes and error bodies.
"""

import pytest

from src.api import create_app


@pytest.fixture
def client(test_db):
    app = create_app("testing")
    return app.test_client()


@pytest.fixture
def closed_batches(reference_data, make_closed_batch):
    return make_closed_batch(500, 7500000), make_closed_batch(300, 4800000, farmer_indexes=(1,))


class TestBatchEndpoints:
    def test_open_and_advance_batch(self, client, reference_data, make_purchase):
        txn = make_purchase(quantity="600", price_per_unit="12500")
        response = client.post(
            "/api/batches",
            json={
                "productId": reference_data.raw_product_id,
                "shelterId": reference_data.shelter_id,
                "inputs": [txn],
            },
        )
        assert response.status_code == 201
        batch_id = response.get_json()["id"]

        response = client.post("/api/advanceBatch", json={"batchId": batch_id})
        assert response.get_json()["status"] == "processing"

        response = client.post(
            f"/api/batches/{batch_id}/advance",
            json={"outputWeight": "500", "productId": reference_data.product_id},
        )
        body = response.get_json()
        assert response.status_code == 200
        assert body["status"] == "closed"
        assert body["unit_cost"] == "15000.0000"

    def test_close_without_output_is_400(self, client, reference_data, make_purchase):
        txn = make_purchase()
        batch_id = client.post(
            "/api/batches",
            json={
                "product_id": reference_data.raw_product_id,
                "shelter_id": reference_data.shelter_id,
                "purchase_transaction_ids": [txn],
            },
        ).get_json()["id"]
        client.post(f"/api/batches/{batch_id}/advance")

        response = client.post(f"/api/batches/{batch_id}/advance", json={"outputWeight": 0})
        assert response.status_code == 400
        assert response.get_json()["error"] == "InvalidOutputWeight"

    def test_allocatable_requires_product(self, client):
        response = client.get("/api/batches/allocatable")
        assert response.status_code == 400

    def test_unknown_batch_is_404(self, client):
        response = client.get("/api/batches/9999")
        assert response.status_code == 404
        assert response.get_json()["error"] == "NotFound"


class TestLotEndpoints:
    def test_create_lot_weighted_average(self, client, reference_data, closed_batches):
        first, second = closed_batches
        response = client.post(
            "/api/createLot",
            json={
                "lotCode": "LOT-API",
                "productId": reference_data.product_id,
                "allocations": [
                    {"batchId": first.id, "weight": 500},
                    {"batchId": second.id, "weight": 300},
                ],
            },
        )
        assert response.status_code == 201
        body = response.get_json()
        assert body["quantity"] == "800.000"
        assert body["unit_cost"] == "15375.0000"

    def test_over_allocation_is_409_with_remaining(self, client, reference_data, closed_batches):
        first, _ = closed_batches
        payload = {
            "productId": reference_data.product_id,
            "allocations": [{"batchId": first.id, "weight": 500}],
        }
        assert client.post("/api/lots", json=dict(payload, lotCode="LOT-1")).status_code == 201

        response = client.post("/api/lots", json=dict(payload, lotCode="LOT-2"))
        body = response.get_json()
        assert response.status_code == 409
        assert body["error"] == "OverAllocated"
        assert body["remaining"] == "0.000"
        assert body["batch_id"] == first.id
        assert body["success"] is False

    def test_empty_lot_is_400(self, client, reference_data):
        response = client.post(
            "/api/createLot",
            json={"lotCode": "LOT-E", "productId": reference_data.product_id, "allocations": []},
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "EmptyLot"

    def test_non_json_body_is_400(self, client):
        response = client.post("/api/createLot", data="not json", content_type="text/plain")
        assert response.status_code == 400

    def test_list_lots(self, client, reference_data, closed_batches):
        first, _ = closed_batches
        client.post(
            "/api/lots",
            json={
                "lotCode": "LOT-L",
                "productId": reference_data.product_id,
                "allocations": [{"batchId": first.id, "weight": 10}],
            },
        )
        body = client.get("/api/lots?per_page=10").get_json()
        assert body["total"] == 1
        assert body["items"][0]["lot_code"] == "LOT-L"

    def test_bad_pagination_is_400(self, client):
        assert client.get("/api/lots?per_page=5000").status_code == 400


class TestDepletionEndpoints:
    @pytest.fixture
    def lot_id(self, client, reference_data, closed_batches):
        first, _ = closed_batches
        return client.post(
            "/api/lots",
            json={
                "lotCode": "LOT-D",
                "productId": reference_data.product_id,
                "allocations": [{"batchId": first.id, "weight": 100}],
            },
        ).get_json()["id"]

    def test_deplete(self, client, lot_id):
        response = client.post("/api/depleteLot", json={"lotId": lot_id, "quantity": 30})
        assert response.status_code == 200
        assert response.get_json()["available_quantity"] == "70.000"

    def test_oversell_is_409(self, client, lot_id):
        response = client.post(f"/api/lots/{lot_id}/deplete", json={"quantity": 150})
        assert response.status_code == 409
        body = response.get_json()
        assert body["error"] == "InsufficientStock"
        assert body["available"] == "100.000"

        assert client.get(f"/api/lots/{lot_id}").get_json()["available_quantity"] == "100.000"

    def test_idempotency_key_header(self, client, lot_id):
        for _ in range(2):
            client.post(
                f"/api/lots/{lot_id}/deplete",
                json={"quantity": 10},
                headers={"Idempotency-Key": "sale-42"},
            )
        history = client.get(f"/api/lots/{lot_id}/depletions").get_json()
        assert len(history) == 1


class TestTraceEndpoints:
    @pytest.fixture
    def lot_code(self, client, reference_data, closed_batches):
        first, second = closed_batches
        client.post(
            "/api/lots",
            json={
                "lotCode": "LOT-T",
                "productId": reference_data.product_id,
                "allocations": [
                    {"batchId": first.id, "weight": 500},
                    {"batchId": second.id, "weight": 300},
                ],
            },
        )
        return "LOT-T"

    def test_lot_provenance(self, client, lot_code):
        lot_id = client.get("/api/lots").get_json()["items"][0]["id"]
        body = client.get(f"/api/lotProvenance/{lot_id}").get_json()
        assert len(body["batches"]) == 2
        assert [f["name"] for f in body["farmers"]] == ["Ahmad", "Siti"]

    def test_public_trace(self, client, lot_code):
        response = client.get(f"/publicTrace/{lot_code}")
        body = response.get_json()
        assert response.status_code == 200
        assert body["lot_code"] == "LOT-T"
        assert "unit_cost" not in body
        assert "available_quantity" not in body

    def test_public_trace_unknown_code_is_404(self, client):
        response = client.get("/publicTrace/LOT-NOPE")
        assert response.status_code == 404
        assert response.get_json()["error"] == "NotFound"


class TestMalformedFields:
    """Non-string values for text fields are rejected as validation errors."""

    def test_numeric_lot_code_is_400(self, client, reference_data, closed_batches):
        first, _ = closed_batches
        response = client.post(
            "/api/createLot",
            json={
                "lotCode": 123,
                "productId": reference_data.product_id,
                "allocations": [{"batchId": first.id, "weight": 10}],
            },
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "lot_code"

    def test_numeric_batch_notes_is_400(self, client, reference_data, make_purchase):
        txn = make_purchase()
        response = client.post(
            "/api/batches",
            json={
                "productId": reference_data.raw_product_id,
                "shelterId": reference_data.shelter_id,
                "inputs": [txn],
                "notes": 5,
            },
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "ValidationError"

    def test_numeric_batch_code_is_400(self, client, reference_data, make_purchase):
        txn = make_purchase()
        response = client.post(
            "/api/batches",
            json={
                "productId": reference_data.raw_product_id,
                "shelterId": reference_data.shelter_id,
                "inputs": [txn],
                "batchCode": 7,
            },
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "batch_code"

    def test_numeric_idempotency_key_is_400(self, client, reference_data, closed_batches):
        first, _ = closed_batches
        lot_id = client.post(
            "/api/lots",
            json={
                "lotCode": "LOT-K",
                "productId": reference_data.product_id,
                "allocations": [{"batchId": first.id, "weight": 10}],
            },
        ).get_json()["id"]

        response = client.post(
            "/api/depleteLot", json={"lotId": lot_id, "quantity": 1, "idempotencyKey": 42}
        )
        assert response.status_code == 400
        assert response.get_json()["field"] == "idempotency_key"
        assert client.get(f"/api/lots/{lot_id}").get_json()["available_quantity"] == "10.000"


class TestUnhandledErrors:
    def test_unexpected_exception_is_json_500(self, test_db):
        app = create_app("testing")
        app.config["PROPAGATE_EXCEPTIONS"] = False

        @app.route("/api/_fail")
        def fail():
            raise RuntimeError("boom")

        response = app.test_client().get("/api/_fail")
        assert response.status_code == 500
        assert response.get_json() == {
            "success": False,
            "error": "InternalError",
            "message": "Internal server error",
        }
