import pytest

from vocabsync.services.connectivity import (
    BECAME_AVAILABLE,
    BECAME_UNAVAILABLE,
    PATH_CHANGED,
    ConnectionQuality,
    ConnectivityMonitor,
    InterfaceType,
    NetworkPath,
)

from conftest import OFFLINE, ONLINE, FakeReachability


def _record(monitor):
    seen = []
    monitor.events.subscribe(BECAME_AVAILABLE, lambda: seen.append("up"))
    monitor.events.subscribe(BECAME_UNAVAILABLE, lambda: seen.append("down"))
    return seen


def test_starts_disconnected(monitor):
    assert monitor.connected is False
    assert monitor.connection_quality == ConnectionQuality.NONE
    assert monitor.status_description == "Offline"


def test_emits_only_on_transitions(monitor, reachability):
    seen = _record(monitor)

    reachability.push(ONLINE)
    reachability.push(ONLINE)
    reachability.push(OFFLINE)
    reachability.push(OFFLINE)
    reachability.push(ONLINE)

    assert seen == ["up", "down", "up"]


def test_path_changed_fires_on_every_update(monitor, reachability):
    paths = []
    monitor.events.subscribe(PATH_CHANGED, paths.append)

    reachability.push(ONLINE)
    reachability.push(ONLINE)

    assert paths == [ONLINE, ONLINE]


def test_first_offline_update_is_not_a_transition(monitor, reachability):
    seen = _record(monitor)
    reachability.push(OFFLINE)
    assert seen == []


@pytest.mark.parametrize("interfaces, quality", [
    ({InterfaceType.WIFI, InterfaceType.CELLULAR}, ConnectionQuality.WIFI),
    ({InterfaceType.CELLULAR}, ConnectionQuality.CELLULAR),
    ({InterfaceType.WIRED}, ConnectionQuality.OTHER),
])
def test_connection_quality(monitor, reachability, interfaces, quality):
    reachability.push(NetworkPath(satisfied=True, interfaces=frozenset(interfaces)))
    assert monitor.connection_quality == quality


def test_large_downloads_need_cheap_unconstrained_link(monitor, reachability):
    reachability.push(ONLINE)
    assert monitor.is_suitable_for_large_downloads is True

    reachability.push(NetworkPath(
        satisfied=True,
        interfaces=frozenset({InterfaceType.CELLULAR}),
        is_expensive=True,
    ))
    assert monitor.is_suitable_for_large_downloads is False
    assert monitor.status_description == "Online (cellular) - dados móveis"


def test_stop_monitoring_stops_source(monitor, reachability):
    monitor.stop_monitoring()
    assert reachability.stopped is True
    assert monitor.is_monitoring is False


def test_start_twice_is_noop():
    source = FakeReachability()
    monitor = ConnectivityMonitor(source)
    monitor.start_monitoring()
    first_handler = source.handler
    monitor.start_monitoring()
    assert source.handler is first_handler


def test_start_without_source_fails():
    with pytest.raises(RuntimeError):
        ConnectivityMonitor().start_monitoring()


def test_failing_subscriber_does_not_block_others(monitor, reachability):
    seen = []

    def broken():
        raise ValueError("boom")

    monitor.events.subscribe(BECAME_AVAILABLE, broken)
    monitor.events.subscribe(BECAME_AVAILABLE, lambda: seen.append("up"))

    reachability.push(ONLINE)
    assert seen == ["up"]
