import pytest
from conftest import FakeSource, metadata

from routesync import db
from routesync.discovery import MalformedResponse
from routesync.models import FrontendDeclaration, ResolvedFrontend, Server, Unresolved
from routesync.notifier import ChangeNotifier
from routesync.reconciler import Reconciler, StartupConfigurationError

WEB = FrontendDeclaration.from_dict({"service": {"id": "web", "port": "80"}, "frontend": {"domain": "x.com"}})

ONE = metadata(["web"], {"WEB_1_PORT_80_TCP_ADDR": "10.0.0.1", "WEB_1_PORT_80_TCP_PORT": "8080"})
TWO = metadata(
    ["web"],
    {
        "WEB_1_PORT_80_TCP_ADDR": "10.0.0.1",
        "WEB_1_PORT_80_TCP_PORT": "8080",
        "WEB_2_PORT_80_TCP_ADDR": "10.0.0.2",
        "WEB_2_PORT_80_TCP_PORT": "8080",
    },
)


@pytest.fixture
def received():
    return []


@pytest.fixture
def reconciler(clock, received):
    notifier = ChangeNotifier()
    notifier.subscribe(received.append)
    return Reconciler(FakeSource(ONE), notifier=notifier, interval_s=30, timer_factory=clock.timer_factory)


def test_commit_stores_state_and_notifies(reconciler, received):
    results = reconciler.configure([WEB])

    assert reconciler.declarations == (WEB,)
    assert reconciler.committed.results == results
    assert received == [results]
    assert results[0].servers == (Server("1", "10.0.0.1", 8080),)


def test_verify_only_does_not_mutate(reconciler, received):
    results = reconciler.configure([WEB], verify_only=True)

    assert isinstance(results[0], ResolvedFrontend)
    assert reconciler.declarations is None
    assert reconciler.committed is None
    assert received == []


def test_poll_skips_without_declarations(reconciler, received):
    assert reconciler.poll() is False
    assert reconciler.client.calls == 0
    assert received == []


def test_unchanged_discovery_is_suppressed(reconciler, received):
    reconciler.configure([WEB])
    first = reconciler.committed

    a = reconciler.configure([WEB], verify_only=True)
    b = reconciler.configure([WEB], verify_only=True)
    assert a == b
    assert reconciler.poll() is False
    assert reconciler.poll() is False

    assert reconciler.committed is first
    assert len(received) == 1


def test_new_instance_is_committed_on_next_poll(reconciler, received):
    reconciler.configure([WEB])
    reconciler.client.raw = TWO

    assert reconciler.poll() is True
    assert len(received) == 2
    servers = received[-1][0].servers
    assert Server("2", "10.0.0.2", 8080) in servers
    assert reconciler.committed.results == received[-1]


def test_poll_fetches_once_even_on_change(reconciler):
    reconciler.configure([WEB])
    reconciler.client.raw = TWO
    calls = reconciler.client.calls

    reconciler.poll()
    assert reconciler.client.calls == calls + 1


def test_service_disappearing_commits_unresolved(reconciler, received):
    reconciler.configure([WEB])
    reconciler.client.raw = metadata(["web"], {})

    assert reconciler.poll() is True
    (entry,) = received[-1]
    assert isinstance(entry, Unresolved)
    assert entry.declaration == WEB


def test_poll_failure_is_logged_and_swallowed(reconciler, received, unavailable):
    reconciler.configure([WEB])
    committed = reconciler.committed
    reconciler.client.fail_with = unavailable

    assert reconciler.poll() is False
    assert reconciler.committed is committed
    assert len(received) == 1
    assert any("connection refused" in e["message"] for e in db.latest_events(level="ERROR"))


def test_configure_propagates_discovery_errors(reconciler):
    reconciler.client.fail_with = MalformedResponse("Invalid JSON")
    with pytest.raises(MalformedResponse):
        reconciler.configure([WEB])


def test_bootstrap_failure_is_fatal(reconciler, unavailable):
    reconciler.client.fail_with = unavailable
    with pytest.raises(StartupConfigurationError):
        reconciler.bootstrap([WEB])
    assert reconciler.committed is None


def test_cadence_one_fetch_per_interval(reconciler, clock):
    reconciler.configure([WEB])
    reconciler.start()
    reconciler.start()  # idempotent
    assert len(clock.pending()) == 1
    assert clock.pending()[0].daemon is True
    base = reconciler.client.calls

    clock.advance(29)
    assert reconciler.client.calls == base

    for i in range(1, 5):
        clock.advance(30)
        assert reconciler.client.calls == base + i
        assert len(clock.pending()) == 1


def test_failing_cycles_keep_the_schedule(reconciler, clock, unavailable):
    reconciler.configure([WEB])
    reconciler.client.fail_with = unavailable
    reconciler.start()
    base = reconciler.client.calls

    clock.advance(90)
    assert reconciler.client.calls == base + 3
    assert len(clock.pending()) == 1


def test_unexpected_error_in_cycle_keeps_the_schedule(clock):
    class Exploding(FakeSource):
        def fetch_raw(self):
            self.calls += 1
            raise KeyError("bug")

    r = Reconciler(Exploding(), interval_s=30, timer_factory=clock.timer_factory)
    r._declarations = (WEB,)
    r.start()

    clock.advance(60)
    assert r.client.calls == 2
    assert len(clock.pending()) == 1
    assert any("KeyError" in e["message"] for e in db.latest_events(level="ERROR"))


def test_stop_cancels_pending_timer(reconciler, clock):
    reconciler.configure([WEB])
    reconciler.start()
    reconciler.stop()
    calls = reconciler.client.calls

    clock.advance(300)
    assert reconciler.client.calls == calls
    assert clock.pending() == []
    assert reconciler.running is False


def test_stop_during_inflight_cycle_prevents_rearm(clock):
    holder = {}

    class StopsMidFetch(FakeSource):
        def fetch_raw(self):
            holder["r"].stop()
            return super().fetch_raw()

    r = Reconciler(StopsMidFetch(ONE), interval_s=30, timer_factory=clock.timer_factory)
    holder["r"] = r
    r._declarations = (WEB,)
    r.start()

    clock.advance(30)
    assert r.client.calls == 1
    assert clock.pending() == []

    clock.advance(300)
    assert r.client.calls == 1


def test_interval_must_be_positive(source):
    with pytest.raises(ValueError):
        Reconciler(source, interval_s=0)


def test_restart_during_inflight_cycle_keeps_one_timer_chain(clock):
    holder = {"restart": True}

    class RestartsMidFetch(FakeSource):
        def fetch_raw(self):
            if holder.pop("restart", False):
                holder["r"].stop()
                holder["r"].start()
            return super().fetch_raw()

    r = Reconciler(RestartsMidFetch(ONE), interval_s=30, timer_factory=clock.timer_factory)
    holder["r"] = r
    r._declarations = (WEB,)
    r.start()

    clock.advance(30)
    assert r.client.calls == 1
    assert len(clock.pending()) == 1

    for i in range(2, 5):
        clock.advance(30)
        assert r.client.calls == i
        assert len(clock.pending()) == 1


def test_subscriber_mutating_healthcheck_does_not_touch_declarations(clock):
    hc = FrontendDeclaration.from_dict(
        {"service": {"id": "web", "port": "80"}, "frontend": {"domain": "x.com", "healthcheck": {"path": "/"}}}
    )
    gone = FrontendDeclaration.from_dict(
        {"service": {"id": "db", "port": "5432"}, "frontend": {"domain": "db.x.com", "healthcheck": {"path": "/"}}}
    )
    expected_fp = hc.fingerprint

    def fill_defaults(results):
        for entry in results:
            if isinstance(entry, ResolvedFrontend):
                entry.healthcheck.setdefault("interval", 2000)
            else:
                entry.declaration.healthcheck.setdefault("interval", 2000)

    notifier = ChangeNotifier()
    notifier.subscribe(fill_defaults)
    r = Reconciler(FakeSource(ONE), notifier=notifier, interval_s=30, timer_factory=clock.timer_factory)
    r.configure([hc, gone])

    assert r.declarations[0].healthcheck == {"path": "/"}
    assert r.declarations[1].healthcheck == {"path": "/"}
    assert r.declarations[0].fingerprint == expected_fp
    assert r.poll() is False


def test_declaration_does_not_alias_caller_dict():
    data = {"service": {"id": "web", "port": "80"}, "frontend": {"domain": "x.com", "healthcheck": {"path": "/"}}}
    d = FrontendDeclaration.from_dict(data)
    data["frontend"]["healthcheck"]["path"] = "/changed"
    d.to_dict()["frontend"]["healthcheck"]["path"] = "/also-changed"

    assert d.healthcheck == {"path": "/"}


def test_subscriber_may_call_configure(reconciler):
    seen = []
    reconciler.notifier.subscribe(lambda results: seen.append(reconciler.configure(reconciler.declarations, verify_only=True)))

    reconciler.configure([WEB])
    assert seen == [reconciler.committed.results]
