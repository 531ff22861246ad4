from fastapi.testclient import TestClient

from pos_desktop.agent import build_runtime, create_app
from pos_desktop.tests.fakes import FakeApi, ok


def _client(tmp_path, api=None, online=False, branch_id=1):
    cfg = {"branch_id": branch_id, "api_base_url": "http://server.test"}
    runtime = build_runtime(cfg, str(tmp_path / "pos.sqlite"), api=api or FakeApi(), probe=lambda: online)
    return TestClient(create_app(runtime, watch=False)), runtime


SALE = {
    "cart": [
        {"product": {"id": 1, "price": 10}, "quantity": 2},
        {"product": {"id": 2, "price": 5}, "quantity": 1},
    ],
    "payment_method": "cash",
    "discount_percent": 10,
}


def test_offline_sale_is_accepted_and_queued(tmp_path):
    client, runtime = _client(tmp_path)
    with client:
        r = client.post("/api/sale", json=SALE)
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["offline"] is True
        assert body["orderId"] < 0
        assert abs(body["totals"]["total_amount"] - 25.875) < 1e-9

        outbox = client.get("/api/outbox").json()
        assert outbox["pending"] == 1
        assert client.get("/api/status").json()["pending_sync"] == 1


def test_empty_cart_is_refused(tmp_path):
    client, _ = _client(tmp_path)
    with client:
        r = client.post("/api/sale", json={"cart": []})
        assert r.status_code == 400


def test_sale_without_branch_is_refused(tmp_path):
    client, _ = _client(tmp_path, branch_id=None)
    with client:
        r = client.post("/api/sale", json=SALE)
        assert r.status_code == 400


def test_startup_drains_queue_when_online(tmp_path):
    api = FakeApi({("POST", "/api/orders"): lambda body: ok({"success": True, "orderId": 3})})
    client, runtime = _client(tmp_path, api=api, online=True)
    runtime.store.init_db()
    runtime.store.enqueue(
        "order",
        {
            "branch_id": 1,
            "items": [{"product_id": 1, "quantity": 1, "price": 10, "total": 10}],
            "subtotal": 10,
            "tax_amount": 1.5,
            "total_amount": 11.5,
            "payment_method": "cash",
            "client_submission_id": "sub-00000001",
        },
    )
    with client:
        assert client.get("/api/status").json() == {"online": True, "pending_sync": 0, "server_healthy": None}
    assert len(api.posted("/api/orders")) == 1


def test_connectivity_toggle_flushes_queue(tmp_path):
    api = FakeApi({("POST", "/api/orders"): lambda body: ok({"success": True, "orderId": 3})})
    client, _ = _client(tmp_path, api=api)
    with client:
        client.post("/api/sale", json=SALE)
        client.post("/api/sale", json=SALE)
        status = client.post("/api/connectivity", json={"online": True}).json()
        assert status["online"] is True
        assert status["pending_sync"] == 0
    assert len(api.posted("/api/orders")) == 2


def test_refresh_reports_unreachable_server(tmp_path):
    client, _ = _client(tmp_path, online=True)
    with client:
        r = client.post("/api/refresh")
        assert r.status_code == 503
        assert r.json()["error"] == "server_unreachable"


def test_scan_uses_local_mirror(tmp_path):
    client, runtime = _client(tmp_path)
    with client:
        runtime.store.replace_collection("products", [{"id": 8, "barcode": "10001", "price": 30}])
        r = client.post("/api/scan", json={"code": "2010001012505"})
        assert r.status_code == 200
        assert r.json() == {"product": {"id": 8, "barcode": "10001", "price": 30}, "quantity": 1.25, "weighed": True}
        assert client.post("/api/scan", json={"code": "0000"}).status_code == 404


def test_waste_write_queues_offline(tmp_path):
    client, runtime = _client(tmp_path)
    with client:
        r = client.post("/api/waste", json={"branch_id": 1, "product_id": 2, "quantity": 0.5, "reason": "damaged"})
        assert r.status_code == 200
        assert r.json()["offline"] is True
        assert runtime.store.peek_head().kind == "waste"


def test_cart_item_without_product_id_is_400(tmp_path):
    client, runtime = _client(tmp_path)
    with client:
        r = client.post("/api/sale", json={"cart": [{"product": {"id": None, "price": 5}, "quantity": 1}]})
        assert r.status_code == 400
        assert r.json()["error"] == "invalid cart"
    assert runtime.store.count_pending() == 0


def test_sale_with_unusable_payment_method_is_refused(tmp_path):
    client, runtime = _client(tmp_path)
    with client:
        r = client.post("/api/sale", json={**SALE, "payment_method": "Credit Card"})
        assert r.status_code == 422
    assert runtime.store.count_pending() == 0
