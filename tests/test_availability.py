"""Availability probe caching and backoff."""

from catalog_search.availability import AvailabilityProbe


class FakeTime:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingClient:
    def __init__(self, fake_es) -> None:
        self._es = fake_es
        self.pings = 0
        self.error = None

    @property
    def cluster(self):
        return self._es.cluster

    def options(self, **kwargs):
        return self

    def ping(self):
        self.pings += 1
        if self.error is not None:
            raise self.error
        return self._es.reachable


def _probe(client, clock):
    return AvailabilityProbe(client, clock=clock)


def test_success_is_cached_for_sixty_seconds(fake_es):
    clock = FakeTime()
    client = CountingClient(fake_es)
    probe = _probe(client, clock)

    assert probe.is_available() is True
    clock.advance(30)
    assert probe.is_available() is True
    assert client.pings == 1

    clock.advance(31)
    assert probe.is_available() is True
    assert client.pings == 2


def test_failure_is_rechecked_after_ten_seconds(fake_es):
    clock = FakeTime()
    client = CountingClient(fake_es)
    fake_es.reachable = False
    probe = _probe(client, clock)

    assert probe.is_available() is False
    clock.advance(5)
    assert probe.is_available() is False
    assert client.pings == 1

    fake_es.reachable = True
    clock.advance(6)
    assert probe.is_available() is True
    assert client.pings == 2


def test_red_cluster_is_unavailable_even_when_reachable(fake_es):
    fake_es.cluster.status = "red"
    probe = _probe(CountingClient(fake_es), FakeTime())

    assert probe.is_available() is False
    assert probe.state().cluster_status == "red"


def test_yellow_cluster_is_available(fake_es):
    fake_es.cluster.status = "yellow"

    assert _probe(CountingClient(fake_es), FakeTime()).is_available() is True


def test_exceptions_never_escape_and_count_failures(fake_es):
    clock = FakeTime()
    client = CountingClient(fake_es)
    client.error = RuntimeError("connection refused")
    probe = _probe(client, clock)

    for expected in range(1, 4):
        assert probe.is_available() is False
        assert probe.state().consecutive_failures == expected
        clock.advance(11)


def test_fifth_failure_backdates_last_check(fake_es):
    clock = FakeTime()
    client = CountingClient(fake_es)
    fake_es.reachable = False
    probe = _probe(client, clock)

    for _ in range(4):
        probe.is_available()
        clock.advance(11)
    probe.is_available()

    state = probe.state()
    assert state.consecutive_failures == 5
    assert state.last_checked_at == clock.now - 50
    # Backdated past the failure TTL, so the very next call checks again.
    probe.is_available()
    assert client.pings == 6


def test_success_resets_failure_counter(fake_es):
    clock = FakeTime()
    client = CountingClient(fake_es)
    fake_es.reachable = False
    probe = _probe(client, clock)
    probe.is_available()
    clock.advance(11)
    probe.is_available()
    assert probe.state().consecutive_failures == 2

    fake_es.reachable = True
    clock.advance(11)
    assert probe.is_available() is True
    assert probe.state().consecutive_failures == 0
