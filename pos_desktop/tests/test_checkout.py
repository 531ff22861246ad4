import asyncio

import pytest
from pydantic import ValidationError

from pos_desktop import checkout as checkout_mod
from pos_desktop.checkout import (
    OrderTransactionService,
    build_order_payload,
    compute_totals,
    suggested_reward,
)
from pos_desktop.connectivity import ConnectivityMonitor
from pos_desktop.local_store import LocalStore
from pos_desktop.api import ApiClient
from pos_desktop.tests.fakes import BROKEN_RESPONSES, FakeApi, down, http_error, ok, raw_http_server

CART = [
    {"product": {"id": 1, "price": 10, "cost_price": 6}, "quantity": 2},
    {"product": {"id": 2, "price": 5, "cost_price": 3}, "quantity": 1},
]


def _service(store, api, online):
    monitor = ConnectivityMonitor(store, initial_online=online)
    return OrderTransactionService(store, api, monitor), monitor


def test_compute_totals_applies_discount_before_tax():
    t = compute_totals([20, 5], 10)
    assert t.subtotal == 25
    assert t.discount_amount == pytest.approx(2.5)
    assert t.tax_amount == pytest.approx(3.375)
    assert t.total == pytest.approx(25.875)


def test_compute_totals_empty_cart():
    t = compute_totals([], 0)
    assert (t.subtotal, t.tax_amount, t.total) == (0, 0, 0)


def test_build_order_payload_lines():
    payload = build_order_payload(CART, branch_id=3, payment_method="cash", discount_percent=10)
    assert [(ln.product_id, ln.quantity, ln.total) for ln in payload.items] == [(1, 2, 20), (2, 1, 5)]
    assert payload.branch_id == 3
    assert len(payload.client_submission_id) == 32


def test_offline_sale_is_queued_with_exact_totals(store):
    api = FakeApi()
    service, monitor = _service(store, api, online=False)
    payload = build_order_payload(CART, branch_id=1, payment_method="cash", discount_percent=10)

    res = asyncio.run(service.submit_order(payload))

    assert res.success is True
    assert res.offline is True
    assert res.order_id < 0
    assert api.calls == []
    entries = store.list_queue()
    assert len(entries) == 1
    body = entries[0].payload
    assert entries[0].kind == "order"
    assert body["subtotal"] == 25
    assert body["discount_amount"] == pytest.approx(2.5)
    assert body["tax_amount"] == pytest.approx(3.375)
    assert body["total_amount"] == pytest.approx(25.875)
    assert body["client_submission_id"] == payload.client_submission_id
    assert monitor.pending_count == 1


def test_placeholder_ids_are_unique_within_same_millisecond(store, monkeypatch):
    monkeypatch.setattr(checkout_mod.time, "time", lambda: 1_700_000_000.0)
    service, _ = _service(store, FakeApi(), online=False)

    async def two_sales():
        a = await service.submit_order(build_order_payload(CART, 1, "cash"))
        b = await service.submit_order(build_order_payload(CART, 1, "cash"))
        return a, b

    a, b = asyncio.run(two_sales())

    assert a.order_id < 0 and b.order_id < 0
    assert a.order_id != b.order_id
    assert store.count_pending() == 2


def test_online_sale_returns_server_id_without_queueing(store):
    api = FakeApi({("POST", "/api/orders"): ok({"success": True, "orderId": 812})})
    service, _ = _service(store, api, online=True)

    res = asyncio.run(service.submit_order(build_order_payload(CART, 1, "card")))

    assert res.success and not res.offline
    assert res.order_id == 812
    assert store.count_pending() == 0


@pytest.mark.parametrize("failure", [down("timed out"), http_error(500, "internal error"), ok({"orderId": 0})])
def test_failed_online_attempt_falls_back_to_queue(store, failure):
    api = FakeApi({("POST", "/api/orders"): failure})
    service, _ = _service(store, api, online=True)
    payload = build_order_payload(CART, 1, "cash")

    res = asyncio.run(service.submit_order(payload))

    assert res.success is True
    assert res.offline is True
    assert res.order_id < 0
    assert store.peek_head().payload == api.posted("/api/orders")[0]


def test_rejected_sale_is_not_queued(store):
    api = FakeApi({("POST", "/api/orders"): http_error(400, "tax_amount does not match")})
    service, _ = _service(store, api, online=True)

    res = asyncio.run(service.submit_order(build_order_payload(CART, 1, "cash")))

    assert res.success is False
    assert res.rejected is True
    assert store.count_pending() == 0


def test_local_storage_failure_is_reported(tmp_path):
    broken = LocalStore(str(tmp_path / "missing" / "pos.sqlite"))
    service, _ = _service(broken, FakeApi(), online=False)

    res = asyncio.run(service.submit_order(build_order_payload(CART, 1, "cash")))

    assert res.success is False
    assert res.order_id is None
    assert "local storage failed" in res.error


def test_loyalty_points_awarded_after_online_sale(store):
    api = FakeApi(
        {
            ("POST", "/api/orders"): ok({"success": True, "orderId": 40}),
            ("POST", "/api/loyalty/add-points"): ok({"success": True, "new_points": 150}),
        }
    )
    service, _ = _service(store, api, online=True)
    # 100 + 5 = 105 before tax, 120.75 after: floor(120.75 / 10) = 12 points.
    cart = [{"product": {"id": 1, "price": 100}, "quantity": 1}, {"product": {"id": 2, "price": 5}, "quantity": 1}]

    res = asyncio.run(service.submit_order(build_order_payload(cart, 1, "cash", customer_id=9)))

    assert api.posted("/api/loyalty/add-points") == [{"customer_id": 9, "points_to_add": 12, "order_id": 40}]
    assert res.loyalty.points_earned == 12
    assert res.loyalty.new_total_points == 150
    assert res.loyalty.suggested_reward == "50 more points to reach the 200-point reward"


def test_loyalty_failure_does_not_fail_sale(store):
    api = FakeApi(
        {
            ("POST", "/api/orders"): ok({"success": True, "orderId": 41}),
            ("POST", "/api/loyalty/add-points"): http_error(404, "customer not found"),
        }
    )
    service, _ = _service(store, api, online=True)

    res = asyncio.run(service.submit_order(build_order_payload(CART, 1, "cash", customer_id=9)))

    assert res.success and res.order_id == 41
    assert res.loyalty.new_total_points is None


def test_offline_sale_skips_loyalty(store):
    api = FakeApi()
    service, _ = _service(store, api, online=False)

    res = asyncio.run(service.submit_order(build_order_payload(CART, 1, "cash", customer_id=9)))

    assert res.offline and res.loyalty is None
    assert api.calls == []


def test_suggested_reward_tiers():
    assert suggested_reward(50) is None
    assert suggested_reward(120) == "80 more points to reach the 200-point reward"
    assert suggested_reward(450) == "50 more points to reach the 500-point reward"
    assert suggested_reward(600) is None


def test_stock_writes_queue_when_offline(store):
    service, _ = _service(store, FakeApi(), online=False)

    async def writes():
        await service.record_waste({"branch_id": 1, "product_id": 2, "quantity": 1, "reason": "spoiled"})
        await service.record_purchase(
            {"branch_id": 1, "total_amount": 50, "items": [{"product_id": 2, "quantity": 10, "cost_price": 5}]}
        )
        return await service.transfer_stock({"from_branch_id": 1, "to_branch_id": 2, "product_id": 2, "quantity": 3})

    res = asyncio.run(writes())

    assert res.success and res.offline
    assert [e.kind for e in store.list_queue()] == ["waste", "purchase", "transfer"]


def test_stock_write_online_returns_server_answer(store):
    api = FakeApi({("POST", "/api/waste"): ok({"success": True, "wasteId": 17})})
    service, _ = _service(store, api, online=True)

    res = asyncio.run(service.record_waste({"branch_id": 1, "product_id": 2, "quantity": 1}))

    assert res.success and not res.offline
    assert res.data["wasteId"] == 17
    assert store.count_pending() == 0


@pytest.mark.parametrize("case", sorted(BROKEN_RESPONSES))
def test_broken_server_answer_queues_the_sale(store, case):
    payload = build_order_payload(CART, 1, "cash")
    with raw_http_server(BROKEN_RESPONSES[case]) as base:
        service, _ = _service(store, ApiClient(base, timeout_s=2), online=True)
        res = asyncio.run(service.submit_order(payload))

    assert res.success is True
    assert res.offline is True
    assert res.order_id < 0
    assert store.peek_head().payload["client_submission_id"] == payload.client_submission_id


def _raw_order(**overrides):
    body = build_order_payload(CART, 1, "cash").model_dump()
    body.update(overrides)
    return body


@pytest.mark.parametrize(
    "overrides",
    [
        {"payment_method": "Credit Card"},
        {"branch_id": 0},
        {"items": [{"product_id": 0, "quantity": 1, "price": 5, "total": 5}]},
        {"client_submission_id": "short"},
        {"tax_amount": -1},
    ],
)
def test_sale_the_server_would_refuse_is_never_queued(store, overrides):
    api = FakeApi()
    service, _ = _service(store, api, online=False)

    res = asyncio.run(service.submit_order(_raw_order(**overrides)))

    assert res.success is False
    assert res.rejected is True
    assert res.order_id is None
    assert store.count_pending() == 0
    assert api.calls == []


def test_payment_method_is_normalized_before_queueing(store):
    service, _ = _service(store, FakeApi(), online=False)

    res = asyncio.run(service.submit_order(_raw_order(payment_method=" CARD ")))

    assert res.success is True
    assert store.peek_head().payload["payment_method"] == "card"


def test_build_order_payload_refuses_bad_payment_method():
    with pytest.raises(ValidationError):
        build_order_payload(CART, 1, "Credit Card")


def test_same_branch_transfer_is_refused_not_queued(store):
    service, _ = _service(store, FakeApi(), online=False)

    res = asyncio.run(service.transfer_stock({"from_branch_id": 2, "to_branch_id": 2, "product_id": 1, "quantity": 1}))

    assert res.success is False
    assert res.rejected is True
    assert store.count_pending() == 0
