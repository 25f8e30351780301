"""Tests for the session mirror of the wizard and its degradation order."""
import pytest

from errors import QuotaError
from wizard_cache import (
    IN_PROGRESS_KEY,
    MINIMAL_STATE_KEY,
    STATE_KEY,
    MemorySessionStorage,
    WizardStateCache,
    minimal_shape,
)


def wizard_state(pages=10, name_length=200):
    return {
        'title': 'Beach Trip',
        'productType': 'standard',
        'artStyle': 'classic',
        'step': 'arrange',
        'uploadProgress': 0,
        'pages': [
            {
                'id': f"page-{i}",
                'pageNumber': i + 1,
                'photo': {'id': f"photo-{i}", 'name': 'x' * name_length, 'preview': 'has-preview'},
            }
            for i in range(pages)
        ],
    }


class TestMemorySessionStorage:
    def test_quota_is_enforced(self):
        storage = MemorySessionStorage(quota_bytes=10)
        storage.set_item('a', '123')
        with pytest.raises(QuotaError):
            storage.set_item('b', '1234567890')
        assert storage.get_item('b') is None


class TestPersist:
    def test_full_shape_when_it_fits(self):
        cache = WizardStateCache(storage=MemorySessionStorage())
        assert cache.persist(wizard_state()) == 'full'
        loaded = cache.load()
        assert loaded['shape'] == 'full'
        assert loaded['title'] == 'Beach Trip'
        assert len(loaded['pages']) == 10

    def test_minimal_shape_when_full_exceeds_quota(self):
        storage = MemorySessionStorage(quota_bytes=1500)
        cache = WizardStateCache(storage=storage)
        assert cache.persist(wizard_state()) == 'minimal'
        assert storage.get_item(STATE_KEY) is None

        loaded = cache.load()
        assert loaded['shape'] == 'minimal'
        assert loaded['pages'][0] == {'id': 'page-0', 'pageNumber': 1, 'hasPhoto': True}

    def test_in_progress_marker_survives_when_both_shapes_fail(self):
        storage = MemorySessionStorage(quota_bytes=30)
        cache = WizardStateCache(storage=storage)
        assert cache.persist(wizard_state()) == 'none'
        assert storage.get_item(IN_PROGRESS_KEY) == '1'
        assert cache.load() == {'shape': 'none', 'pages': []}

    def test_nothing_in_progress(self):
        cache = WizardStateCache(storage=MemorySessionStorage())
        assert cache.load() is None

    def test_full_write_replaces_an_older_minimal_shape(self):
        storage = MemorySessionStorage(quota_bytes=1500)
        cache = WizardStateCache(storage=storage)
        cache.persist(wizard_state())
        assert storage.get_item(MINIMAL_STATE_KEY) is not None

        storage.quota_bytes = 100000
        assert cache.persist(wizard_state(pages=2)) == 'full'
        assert storage.get_item(MINIMAL_STATE_KEY) is None
        assert cache.load()['shape'] == 'full'

    def test_minimal_shape_for_blank_pages(self):
        state = {'pages': [{'id': 'a', 'pageNumber': 1, 'photo': None}]}
        assert minimal_shape(state)['pages'] == [{'id': 'a', 'pageNumber': 1, 'hasPhoto': False}]


class TestDebounce:
    def test_one_write_per_interval(self):
        now = [10.0]
        cache = WizardStateCache(storage=MemorySessionStorage(), interval=0.3, clock=lambda: now[0])

        cache.schedule(wizard_state(pages=1))
        for pages in range(2, 6):
            now[0] += 0.05
            cache.schedule(wizard_state(pages=pages))
        assert cache.writes == 1
        assert cache.has_pending

        assert cache.flush() == 'full'
        assert cache.writes == 2
        assert len(cache.load()['pages']) == 5
        assert cache.flush() is None

    def test_write_after_interval_is_immediate(self):
        now = [0.0]
        cache = WizardStateCache(storage=MemorySessionStorage(), interval=0.3, clock=lambda: now[0])
        cache.schedule(wizard_state(pages=1))
        now[0] = 0.3
        cache.schedule(wizard_state(pages=2))
        assert cache.writes == 2
        assert not cache.has_pending

    def test_clear_drops_pending_state(self):
        now = [0.0]
        cache = WizardStateCache(storage=MemorySessionStorage(), clock=lambda: now[0])
        cache.schedule(wizard_state(pages=1))
        cache.schedule(wizard_state(pages=2))
        cache.clear()
        assert not cache.has_pending
        assert cache.load() is None

    def test_last_change_of_a_burst_is_written_once_idle(self):
        now = [0.0]
        cache = WizardStateCache(storage=MemorySessionStorage(), interval=0.3, clock=lambda: now[0], timer_factory=None)

        cache.schedule({**wizard_state(pages=1), 'title': 'Beach'})
        now[0] = 0.05
        cache.schedule({**wizard_state(pages=1), 'title': 'Beach Trip'})
        assert cache.writes == 1

        now[0] = 10.0
        assert cache.load()['title'] == 'Beach Trip'
        assert cache.writes == 2
        assert not cache.has_pending


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


class TestTrailingWrite:
    def make_cache(self, now):
        timers = []

        def timer_factory(delay, callback):
            timers.append(FakeTimer(delay, callback))
            return timers[-1]

        cache = WizardStateCache(storage=MemorySessionStorage(), interval=0.3, clock=lambda: now[0], timer_factory=timer_factory)
        return cache, timers

    def test_timer_writes_the_last_snapshot(self):
        now = [0.0]
        cache, timers = self.make_cache(now)

        cache.schedule({**wizard_state(pages=1), 'title': 'Beach'})
        assert timers == []
        now[0] = 0.05
        cache.schedule({**wizard_state(pages=1), 'title': 'Beach Trip'})
        assert len(timers) == 1
        assert timers[0].started
        assert timers[0].delay == pytest.approx(0.25)

        now[0] = 0.3
        assert timers[0].callback() == 'full'
        assert cache.writes == 2
        assert cache.storage.get_item(STATE_KEY) is not None
        assert cache.load()['title'] == 'Beach Trip'

    def test_newer_change_rearms_the_timer(self):
        now = [0.0]
        cache, timers = self.make_cache(now)

        cache.schedule(wizard_state(pages=1))
        now[0] = 0.1
        cache.schedule(wizard_state(pages=2))
        now[0] = 0.2
        cache.schedule(wizard_state(pages=3))
        assert len(timers) == 2
        assert timers[0].cancelled
        assert not timers[1].cancelled

    def test_early_timer_does_not_write(self):
        now = [0.0]
        cache, timers = self.make_cache(now)

        cache.schedule(wizard_state(pages=1))
        now[0] = 0.1
        cache.schedule(wizard_state(pages=2))
        assert timers[0].callback() is None
        assert cache.writes == 1
        assert cache.has_pending

    def test_clear_cancels_the_timer(self):
        now = [0.0]
        cache, timers = self.make_cache(now)

        cache.schedule(wizard_state(pages=1))
        now[0] = 0.1
        cache.schedule(wizard_state(pages=2))
        cache.clear()
        assert timers[0].cancelled
        now[0] = 1.0
        assert timers[0].callback() is None
        assert cache.load() is None
