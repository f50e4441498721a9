import asyncio

import pytest

from cafepos.core.enums import Role
from cafepos.core.errors import GuardError, PolicyError
from cafepos.engine.pos import OBSERVE, OPEN_SHIFT, OPERATE


def test_cashier_without_shift_gets_the_open_shift_screen(make_engine, backend, draft):
    pos = make_engine(role=Role.cashier)

    async def scenario():
        await pos.refresh()
        with pytest.raises(PolicyError) as exc:
            await pos.create_order(draft(10000))
        return exc.value

    err = asyncio.run(scenario())
    assert err.code == "SHIFT_REQUIRED"
    assert pos.access() == OPEN_SHIFT
    with pytest.raises(PolicyError):
        pos.order_rows()
    with pytest.raises(PolicyError):
        pos.shift_stats()
    assert "create" not in backend.calls
    assert pos.notifier.last.level == "error"


def test_owner_without_shift_may_only_look(make_engine, backend, draft):
    pos = make_engine(role=Role.owner)

    async def scenario():
        await pos.refresh()
        await pos.start_shift(50000)
        o = await pos.create_order(draft(10000))
        await pos.close_shift(50000)
        assert pos.access() == OBSERVE
        with pytest.raises(PolicyError) as exc:
            await pos.confirm_payment(o.id)
        return exc.value

    err = asyncio.run(scenario())
    assert err.code == "OBSERVE_ONLY"
    assert len(pos.order_rows()) == 1
    assert pos.balance_view().cashier_label == "- (closed)"
    assert pos.balance_view().cash_text == "Rp 0"
    assert "pay" not in backend.calls


def test_shift_open_expense_close(make_engine, backend):
    pos = make_engine()

    async def scenario():
        await pos.refresh()
        with pytest.raises(GuardError):
            await pos.start_shift(-5)
        await pos.start_shift(100000)
        assert pos.access() == OPERATE
        with pytest.raises(GuardError) as dup:
            await pos.start_shift(100000)
        assert dup.value.code == "SHIFT_ALREADY_OPEN"

        with pytest.raises(GuardError) as bad:
            await pos.record_expense(0, "ice")
        assert bad.value.code == "INVALID_AMOUNT"
        with pytest.raises(GuardError) as blank:
            await pos.record_expense(5000, " ")
        assert blank.value.code == "DESCRIPTION_REQUIRED"

        bal = await pos.record_expense(15000, "milk")
        assert bal.cash_total == 85000
        assert bal.expenses_total == 15000
        return await pos.close_shift(84000)

    summary = asyncio.run(scenario())
    assert summary.expected_cash == 85000
    assert summary.difference == -1000
    assert pos.access() == OPEN_SHIFT
    assert backend.calls.count("start_shift") == 1


def test_poller_refreshes_until_stopped(make_engine, backend):
    pos = make_engine()

    async def scenario():
        async with pos.poller(interval=0.01) as poller:
            assert poller.running
            await asyncio.sleep(0.05)
        assert not poller.running
        return backend.calls.count("list_orders")

    assert asyncio.run(scenario()) >= 2


def test_poller_disabled_with_zero_interval(make_engine):
    pos = make_engine()

    async def scenario():
        poller = pos.poller(interval=0)
        poller.start()
        running = poller.running
        await poller.stop()
        return running

    assert asyncio.run(scenario()) is False


def test_listeners_see_balance_changes(make_engine, draft):
    pos = make_engine()
    seen = []
    pos.balance_cache.subscribe(lambda b: seen.append(b.cash_total if b else None))

    async def scenario():
        await pos.refresh()
        await pos.start_shift(100000)
        o = await pos.create_order(draft(50000))
        await pos.confirm_payment(o.id)

    asyncio.run(scenario())
    assert seen[0] == 0
    assert seen[-1] == 150000
    # the confirmed value is drawn once, not again on revalidation
    assert seen.count(150000) == 1
