import asyncio
import socket

from pos_desktop.connectivity import ConnectivityMonitor, probe_reachability


def test_initialize_seeds_state_without_syncing(store):
    calls = []

    async def sync():
        calls.append(1)

    monitor = ConnectivityMonitor(store, initial_online=False, probe=lambda: True)
    monitor.bind_sync(sync)

    assert asyncio.run(monitor.initialize()) is True
    assert monitor.is_online()
    assert calls == []


def test_check_fires_only_on_offline_to_online(store):
    signals = iter([False, True, True, False, True])
    calls = []

    async def sync():
        calls.append(1)

    monitor = ConnectivityMonitor(store, initial_online=False, probe=lambda: next(signals))
    monitor.bind_sync(sync)

    async def poll():
        for _ in range(5):
            await monitor.check()

    asyncio.run(poll())

    assert len(calls) == 2


def test_status_reports_pending_count(store):
    store.enqueue("order", {})
    store.enqueue("order", {})
    monitor = ConnectivityMonitor(store)
    asyncio.run(monitor.refresh_pending_count())
    assert monitor.status() == {"online": False, "pending_sync": 2, "server_healthy": None}


def test_probe_reachability():
    listener = socket.socket()
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    port = listener.getsockname()[1]
    try:
        assert probe_reachability(f"http://127.0.0.1:{port}", timeout_s=1) is True
    finally:
        listener.close()
    assert probe_reachability("", timeout_s=1) is False
    assert probe_reachability(f"http://127.0.0.1:{port}", timeout_s=1) is False
