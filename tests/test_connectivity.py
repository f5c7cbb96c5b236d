"""Tests for the connectivity monitor."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from spendsync.protocols import ConnectivitySignal
from spendsync.sync.connectivity import ConnectionType, ConnectivityMonitor


def test_satisfies_connectivity_protocol():
    assert isinstance(ConnectivityMonitor(), ConnectivitySignal)


def test_restored_and_lost_fire_only_on_transitions():
    monitor = ConnectivityMonitor(reachable=False)
    restored, lost = MagicMock(), MagicMock()
    monitor.subscribe(restored)
    monitor.subscribe_lost(lost)

    monitor.update(True, connection_type=ConnectionType.WIFI)
    monitor.update(True)
    monitor.update(False)
    monitor.update(False)

    assert restored.call_count == 1
    assert lost.call_count == 1
    assert monitor.is_reachable is False


def test_unsubscribe_stops_notifications():
    monitor = ConnectivityMonitor(reachable=False)
    callback = MagicMock()
    monitor.subscribe(callback)
    monitor.unsubscribe(callback)
    monitor.update(True)
    callback.assert_not_called()


def test_failing_callback_does_not_block_others():
    monitor = ConnectivityMonitor(reachable=False)
    second = MagicMock()
    monitor.subscribe(MagicMock(side_effect=RuntimeError("boom")))
    monitor.subscribe(second)
    monitor.update(True)
    second.assert_called_once()


@pytest.mark.parametrize(
    "reachable,expensive,constrained,allow_expensive,allow_constrained,expected",
    [
        (True, False, False, True, False, True),
        (False, False, False, True, True, False),
        (True, True, False, True, False, True),
        (True, True, False, False, False, False),
        (True, False, True, True, False, False),
        (True, False, True, True, True, True),
    ],
)
def test_should_sync_policy(
    reachable, expensive, constrained, allow_expensive, allow_constrained, expected
):
    monitor = ConnectivityMonitor()
    monitor.update(reachable, expensive=expensive, constrained=constrained)
    assert monitor.should_sync(allow_expensive, allow_constrained) is expected


@pytest.mark.asyncio
async def test_async_callbacks_are_scheduled():
    monitor = ConnectivityMonitor(reachable=False)
    callback = AsyncMock()
    monitor.subscribe(callback)

    monitor.update(True)
    await monitor.wait_for_callbacks()

    callback.assert_awaited_once()


@pytest.mark.asyncio
async def test_check_caches_probe_results():
    probe = AsyncMock(return_value=False)
    monitor = ConnectivityMonitor(probe=probe, cache_ttl=60)

    assert await monitor.check() is False
    assert await monitor.check() is False
    assert probe.await_count == 1
    assert monitor.is_reachable is False


@pytest.mark.asyncio
async def test_check_treats_probe_errors_as_offline():
    monitor = ConnectivityMonitor(probe=AsyncMock(side_effect=OSError("no route")))
    assert await monitor.check() is False
