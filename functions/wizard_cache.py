"""
Short-lived persistence of the create-book wizard.

The wizard snapshot is mirrored into a quota-bounded session storage so a
reload keeps titles, product choices and page order. Photo bytes are never
written; only a presence marker is. Writes are coalesced to one per interval
and degrade from the full shape to a minimal shape when the quota is hit.
"""
import json
import threading
import time
from typing import Any, Callable, Dict, Optional

from config import WIZARD_PERSIST_INTERVAL, WIZARD_SESSION_QUOTA_BYTES
from errors import QuotaError


STATE_KEY = 'wizardState'
MINIMAL_STATE_KEY = 'wizardMinimalState'
IN_PROGRESS_KEY = 'wizardInProgress'


class MemorySessionStorage:
    """Per-session key/value storage with a byte quota, like a browser tab's session storage."""

    def __init__(self, quota_bytes: int = WIZARD_SESSION_QUOTA_BYTES):
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def _size_with(self, key: str, value: str) -> int:
        items = dict(self._items)
        items[key] = value
        return sum(len(k.encode('utf-8')) + len(v.encode('utf-8')) for k, v in items.items())

    def set_item(self, key: str, value: str) -> None:
        if self._size_with(key, value) > self.quota_bytes:
            raise QuotaError(f"Session storage quota exceeded writing {key}")
        self._items[key] = value

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


def full_shape(state: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'productType': state.get('productType'),
        'artStyle': state.get('artStyle'),
        'title': state.get('title', ''),
        'step': state.get('step'),
        'uploadProgress': state.get('uploadProgress', 0),
        'pages': state.get('pages', []),
    }


def minimal_shape(state: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'productType': state.get('productType'),
        'artStyle': state.get('artStyle'),
        'pages': [
            {
                'id': page.get('id'),
                'pageNumber': page.get('pageNumber'),
                'hasPhoto': bool(page.get('photo')),
            }
            for page in state.get('pages', [])
        ],
    }


class WizardStateCache:
    """Debounced writer with the degradation order full shape -> minimal shape -> none."""

    def __init__(
        self,
        storage=None,
        interval: float = WIZARD_PERSIST_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        timer_factory: Optional[Callable[[float, Callable[[], Any]], Any]] = threading.Timer
    ):
        self.storage = storage if storage is not None else MemorySessionStorage()
        self.interval = interval
        self.clock = clock
        self.timer_factory = timer_factory
        self._pending: Optional[Dict[str, Any]] = None
        self._last_write: Optional[float] = None
        self._timer = None
        self._lock = threading.RLock()
        self.writes = 0

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _due(self) -> bool:
        return self._last_write is None or self.clock() - self._last_write >= self.interval

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm_timer(self) -> None:
        """Trailing write for the last snapshot of a burst."""
        self._cancel_timer()
        if self.timer_factory is None:
            return
        remaining = max(0.0, self.interval - (self.clock() - self._last_write))
        self._timer = self.timer_factory(remaining, self.flush_due)
        if hasattr(self._timer, 'daemon'):
            self._timer.daemon = True
        self._timer.start()

    def schedule(self, state: Dict[str, Any]) -> None:
        """
        Record a new snapshot. It is written now if the interval has elapsed since
        the last write, otherwise it replaces any snapshot still waiting and is
        written once the interval is over.
        """
        with self._lock:
            self._pending = state
            if self._due():
                self.flush()
            else:
                self._arm_timer()

    def flush_due(self) -> Optional[str]:
        """Write the waiting snapshot if the interval since the last write is over."""
        with self._lock:
            if self._pending is None or not self._due():
                return None
            return self.flush()

    def flush(self) -> Optional[str]:
        """
        Write the waiting snapshot, if any.

        Returns:
            str: Shape written ('full', 'minimal', 'none'), None when nothing was waiting
        """
        with self._lock:
            self._cancel_timer()
            if self._pending is None:
                return None
            state, self._pending = self._pending, None
            self._last_write = self.clock()
            self.writes += 1
            return self.persist(state)

    def persist(self, state: Dict[str, Any]) -> str:
        try:
            self.storage.set_item(IN_PROGRESS_KEY, '1')
        except QuotaError:
            print("Error persisting wizard marker")
            return 'none'

        try:
            self.storage.remove_item(MINIMAL_STATE_KEY)
            self.storage.set_item(STATE_KEY, json.dumps(full_shape(state)))
            print(f"State persisted. Total pages: {len(state.get('pages', []))}")
            return 'full'
        except QuotaError:
            print("Error persisting state")

        # A stale full shape must not win over the minimal one on load
        self.storage.remove_item(STATE_KEY)
        try:
            self.storage.set_item(MINIMAL_STATE_KEY, json.dumps(minimal_shape(state)))
            print("Minimal state persisted as fallback")
            return 'minimal'
        except QuotaError:
            print("Even minimal state persistence failed")
            return 'none'

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Read back the persisted wizard.

        Returns:
            dict: Saved state with 'shape' set to 'full', 'minimal' or 'none';
                None when no wizard was in progress
        """
        self.flush_due()
        if self.storage.get_item(IN_PROGRESS_KEY) is None:
            return None

        for key, shape in ((STATE_KEY, 'full'), (MINIMAL_STATE_KEY, 'minimal')):
            raw = self.storage.get_item(key)
            if not raw:
                continue
            try:
                state = json.loads(raw)
            except ValueError:
                print(f"Error loading {shape} state")
                continue
            state['shape'] = shape
            print(f"Loading {len(state.get('pages', []))} pages from storage")
            return state

        return {'shape': 'none', 'pages': []}

    def clear(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._pending = None
        for key in (STATE_KEY, MINIMAL_STATE_KEY, IN_PROGRESS_KEY):
            self.storage.remove_item(key)
