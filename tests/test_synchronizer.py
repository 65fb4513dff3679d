import asyncio

from lottery_dapp.blockchain.client import BlockchainEvent
from lottery_dapp.lottery.models import ContractSnapshot, RoundState
from lottery_dapp.lottery.state_store import LOADING_UPDATE, SNAPSHOT_UPDATE, StateStore
from lottery_dapp.lottery.synchronizer import StateSynchronizer

from fakes import ALICE, BOB, OWNER, FakeChain, FakeGateway


def make_sync(chain=None, config=None, address=None):
    gateway = FakeGateway(chain or FakeChain())
    store = StateStore()
    sync = StateSynchronizer(gateway, store, config or {}, current_address=lambda: address)
    return gateway, store, sync


def test_refresh_publishes_all_fields():
    chain = FakeChain(state=RoundState.CLOSED, round_id=4)
    chain.players = [ALICE]
    chain.winner = BOB
    gateway, store, sync = make_sync(chain, address=ALICE)

    assert asyncio.run(sync.refresh()) is True

    snap = store.get_snapshot()
    assert snap.round_id == 4
    assert snap.player_count == 1
    assert snap.owner == OWNER
    assert snap.round_state == RoundState.CLOSED
    assert snap.last_winner == BOB
    assert snap.caller_has_entered is True
    assert snap.caller_address == ALICE
    assert store.is_loading is False


def test_refresh_without_address_skips_entrant_read():
    chain = FakeChain()
    _, store, sync = make_sync(chain)

    assert asyncio.run(sync.refresh()) is True
    assert chain.calls["hasEntered"] == 0
    assert store.get_snapshot().caller_has_entered is False


def test_partial_failure_keeps_previous_snapshot():
    chain = FakeChain(round_id=1)
    _, store, sync = make_sync(chain, address=ALICE)

    async def scenario():
        await sync.refresh()
        before = store.get_snapshot()
        chain.round_id = 2
        chain.fail.add("recentWinner")
        published = await sync.refresh()
        return before, published

    before, published = asyncio.run(scenario())
    assert published is False
    assert store.get_snapshot() is before
    assert store.get_snapshot().round_id == 1
    assert store.is_loading is False


def test_result_for_previous_account_is_discarded():
    addresses = iter([ALICE, BOB])
    gateway = FakeGateway()
    store = StateStore()
    sync = StateSynchronizer(gateway, store, {}, current_address=lambda: next(addresses))

    assert asyncio.run(sync.refresh()) is False
    assert store.get_snapshot() is None


def test_closed_synchronizer_refuses_refresh():
    chain = FakeChain()
    _, store, sync = make_sync(chain)
    sync.halt()

    assert asyncio.run(sync.refresh()) is False
    assert sync.refresh_count == 0
    assert chain.calls["currentRound"] == 0


def test_loading_flag_events():
    _, store, sync = make_sync()
    seen = []
    store.add_listener(LOADING_UPDATE, lambda payload: seen.append(payload["loading"]))

    asyncio.run(sync.refresh())
    assert seen == [True, False]


def test_older_generation_never_replaces_newer():
    store = StateStore()
    published = []
    store.add_listener(SNAPSHOT_UPDATE, published.append)

    def snap(generation, round_id):
        return ContractSnapshot(round_id, 0, OWNER, RoundState.OPEN, None, False, generation=generation)

    assert store.publish_snapshot(snap(2, 20)) is True
    assert store.publish_snapshot(snap(1, 10)) is False
    assert store.get_snapshot().round_id == 20
    assert len(published) == 1


def test_polling_refreshes_until_stopped():
    _, _, sync = make_sync(config={"sync": {"poll_interval_sec": "0.01"}})

    async def scenario():
        sync.start_polling()
        sync.start_polling()
        assert sync.polling is True
        await asyncio.sleep(0.1)
        await sync.stop_polling()
        count = sync.refresh_count
        await asyncio.sleep(0.05)
        return count

    count = asyncio.run(scenario())
    assert count >= 2
    assert sync.refresh_count == count
    assert sync.polling is False


def test_contract_events_trigger_refresh():
    chain = FakeChain()
    config = {"sync": {"poll_interval_sec": 60, "event_driven": "true", "event_poll_interval_sec": 0.01}}
    _, store, sync = make_sync(chain, config=config)

    async def scenario():
        sync.start_polling()
        await asyncio.sleep(0.05)
        assert sync.refresh_count == 0
        chain.events = [BlockchainEvent("PlayerEntered", {"roundId": 1, "player": ALICE}, 101, "0x01")]
        await asyncio.sleep(0.1)
        await sync.close()

    asyncio.run(scenario())
    assert sync.refresh_count == 1
    assert store.get_snapshot() is not None


def test_overlapping_refresh_finishing_last_is_discarded():
    chain = FakeChain(round_id=1)
    _, store, sync = make_sync(chain)

    async def scenario():
        chain.read_gate = asyncio.Event()
        gate = chain.read_gate
        first = asyncio.create_task(sync.refresh())
        while sum(chain.calls.values()) < 5:
            await asyncio.sleep(0)

        chain.read_gate = None
        chain.round_id = 2
        second = await sync.refresh()
        gate.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert second is True
    assert first is False
    assert store.get_snapshot().round_id == 2
    assert store.get_snapshot().generation == 2
    assert store.is_loading is False
