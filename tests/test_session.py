import asyncio

import pytest

from lottery_dapp.lottery.errors import UserRejected, WalletUnavailable
from lottery_dapp.wallet.provider import ACCOUNTS_CHANGED, CHAIN_CHANGED
from lottery_dapp.wallet.session import ProviderSession

from fakes import ALICE, BOB, FakeProvider


def test_connect_without_provider():
    session = ProviderSession(None)
    with pytest.raises(WalletUnavailable):
        asyncio.run(session.connect())
    assert session.session is None


def test_user_rejection_keeps_disconnected():
    provider = FakeProvider(approve=False)
    session = ProviderSession(provider)
    with pytest.raises(UserRejected):
        asyncio.run(session.connect())
    assert session.is_active is False
    assert provider.listener_count(ACCOUNTS_CHANGED) == 0


def test_connect_subscribes_once():
    provider = FakeProvider()
    session = ProviderSession(provider)
    seen = []
    session.add_listener(seen.append)

    first = asyncio.run(session.connect())
    second = asyncio.run(session.connect())

    assert first is second
    assert first.address.lower() == ALICE
    assert first.chain_id == 1
    assert seen == [first]
    assert provider.listener_count(ACCOUNTS_CHANGED) == 1
    assert provider.listener_count(CHAIN_CHANGED) == 1


def test_disconnect_unsubscribes_and_notifies():
    provider = FakeProvider()
    session = ProviderSession(provider)
    seen = []
    session.add_listener(seen.append)

    asyncio.run(session.connect())
    session.disconnect()
    session.disconnect()

    assert seen[-1] is None
    assert len(seen) == 2
    assert provider.listener_count(ACCOUNTS_CHANGED) == 0
    assert provider.listener_count(CHAIN_CHANGED) == 0


def test_account_switch_rebuilds_session():
    provider = FakeProvider()
    session = ProviderSession(provider)
    seen = []
    session.add_listener(seen.append)
    asyncio.run(session.connect())

    provider.change_accounts([BOB])

    assert session.address.lower() == BOB
    assert seen[-1].address.lower() == BOB
    assert seen[-1].signer.address.lower() == BOB


def test_empty_account_list_disconnects():
    provider = FakeProvider()
    session = ProviderSession(provider)
    asyncio.run(session.connect())

    provider.change_accounts([])

    assert session.session is None
    assert provider.listener_count(ACCOUNTS_CHANGED) == 0


def test_chain_change_requests_reload_once_without_notifying():
    provider = FakeProvider()
    reloads = []
    session = ProviderSession(provider, on_reload=reloads.append)
    seen = []
    session.add_listener(seen.append)
    asyncio.run(session.connect())

    provider.change_chain(5)
    provider.change_chain(6)

    assert reloads == ["0x5"]
    assert session.session is None
    assert session.reload_requested is True
    assert len(seen) == 1
    with pytest.raises(WalletUnavailable):
        asyncio.run(session.connect())


def test_silent_reconnect():
    provider = FakeProvider()
    session = ProviderSession(provider)
    assert asyncio.run(session.silent_reconnect()) is None
    assert "eth_requestAccounts" not in provider.requests

    provider.authorized = True
    restored = asyncio.run(session.silent_reconnect())
    assert restored is not None
    assert restored.address.lower() == ALICE


def test_silent_reconnect_without_provider():
    assert asyncio.run(ProviderSession(None).silent_reconnect()) is None


def test_chain_change_during_connect_prompt_fails_the_connect():
    provider = FakeProvider()
    reloads = []
    session = ProviderSession(provider, on_reload=reloads.append)
    seen = []
    session.add_listener(seen.append)

    async def scenario():
        provider.prompt_gate = asyncio.Event()
        task = asyncio.create_task(session.connect())
        while "eth_requestAccounts" not in provider.requests:
            await asyncio.sleep(0)
        provider.change_chain(5)
        provider.prompt_gate.set()
        with pytest.raises(WalletUnavailable):
            await task

    asyncio.run(scenario())
    assert reloads == ["0x5"]
    assert session.session is None
    assert seen == []
    assert provider.listener_count(ACCOUNTS_CHANGED) == 0
    assert provider.listener_count(CHAIN_CHANGED) == 0
