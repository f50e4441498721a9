import asyncio
import uuid

import pytest

from cafepos.middleware import idempotency


def test_repeated_key_replays_payment(client, open_shift, new_order):
    open_shift(100000)
    o = new_order(50000)
    headers = {"Idempotency-Key": uuid.uuid4().hex}

    first = client.post(f"/orders/{o['id']}/pay", json={"method": "cash"}, headers=headers)
    second = client.post(f"/orders/{o['id']}/pay", json={"method": "cash"}, headers=headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.headers.get("Idempotent-Replay") == "true"
    assert second.json()["replay"] is True
    assert second.json()["order"]["id"] == first.json()["order"]["id"]
    assert client.get("/shift/current-balance").json()["cash_total"] == 150000


def test_fresh_key_is_evaluated_again(client, open_shift, new_order):
    open_shift()
    o = new_order(10000)
    client.post(f"/orders/{o['id']}/pay", headers={"Idempotency-Key": uuid.uuid4().hex})
    r = client.post(f"/orders/{o['id']}/pay", headers={"Idempotency-Key": uuid.uuid4().hex})
    assert r.status_code == 409 and r.json()["detail"] == "ORDER_ALREADY_PAID"


def test_rejections_are_not_cached(client, open_shift, new_order):
    o = new_order(30000)
    headers = {"Idempotency-Key": uuid.uuid4().hex}

    r = client.post(f"/orders/{o['id']}/pay", headers=headers)
    assert r.status_code == 409 and r.json()["detail"] == "SHIFT_CLOSED"

    open_shift()
    r = client.post(f"/orders/{o['id']}/pay", headers=headers)
    assert r.status_code == 200
    assert r.json()["replay"] is False


def test_merge_is_covered(client, new_order):
    a = new_order(10000)
    b = new_order(20000)
    headers = {"Idempotency-Key": uuid.uuid4().hex}
    body = {"ids": [a["id"], b["id"]]}
    assert client.post("/orders/merge", json=body, headers=headers).status_code == 200
    r = client.post("/orders/merge", json=body, headers=headers)
    assert r.status_code == 200
    assert r.json()["replay"] is True


def test_cancelled_waiter_releases_its_key():
    locks = idempotency.KeyLocks()

    async def scenario():
        await locks.acquire("pay:k1")
        waiter = asyncio.ensure_future(locks.acquire("pay:k1"))
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        locks.release("pay:k1")

    asyncio.run(scenario())
    assert len(locks) == 0
