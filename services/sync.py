# /conquistas/services/sync.py
"""
Keeps every client's view of the achievement list consistent.

Each client (browser tab, API consumer) gets a SyncSession holding its cached
list and a pending-changes flag:

    Idle --local mutation--> Dirty --confirm_changes()--> Idle

While Dirty, inbound broadcasts and polls are ignored so an admin's edits are
not replaced mid-session. confirm_changes() bumps the published revision in
storage and broadcasts the list on the ChangeBus; other sessions in this
process pick it up immediately, sessions in other processes on their next
poll. Lost updates are prevented by the per-row version checked in storage,
not by the pending flag.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List, Optional

from blinker import Namespace

from services.catalog import AchievementCatalog
from services.models import Achievement

log = logging.getLogger(__name__)


class ChangeBus:
    """In-process pub/sub for published achievement lists."""

    def __init__(self, signal=None):
        # one signal per bus so two apps in a process never hear each other
        self.signal = signal if signal is not None else Namespace().signal("achievements-published")

    def subscribe(self, receiver: Callable):
        # weak=False: sessions disconnect explicitly in close()
        self.signal.connect(receiver, weak=False)

    def unsubscribe(self, receiver: Callable):
        self.signal.disconnect(receiver)

    def publish(self, sender, revision: int, achievements: List[Achievement]):
        self.signal.send(sender, revision=revision, achievements=achievements)


class SyncSession:
    def __init__(self, catalog: AchievementCatalog, bus: ChangeBus,
                 poll_interval: float = 5.0, clock: Callable[[], float] = time.monotonic,
                 subscribe: bool = True):
        self.catalog = catalog
        self.bus = bus
        self.poll_interval = poll_interval
        self.clock = clock
        self.achievements: List[Achievement] = []
        self.pending_changes = False
        self.revision = 0
        self._last_poll: Optional[float] = None
        self._lock = threading.RLock()
        self._subscribed = subscribe
        if subscribe:
            self.bus.subscribe(self._on_published)

    # --- lifecycle ---
    def load(self) -> List[Achievement]:
        with self._lock:
            self.achievements = self.catalog.list()
            self.revision = self.catalog.storage.get_revision()
            self._last_poll = self.clock()
            return list(self.achievements)

    def close(self):
        if self._subscribed:
            self.bus.unsubscribe(self._on_published)
            self._subscribed = False

    def has_pending_changes(self) -> bool:
        return self.pending_changes

    # --- local mutations (Idle -> Dirty) ---
    def add(self, payload) -> Achievement:
        created = self.catalog.add(payload)
        with self._lock:
            self.achievements = self.achievements + [created]
            self.pending_changes = True
        return created

    def update(self, payload) -> Achievement:
        updated = self.catalog.update(payload)
        self._replace(updated)
        return updated

    def remove(self, aid: str) -> None:
        self.catalog.remove(aid)
        with self._lock:
            self.achievements = [a for a in self.achievements if a.id != aid]
            self.pending_changes = True

    def set_image(self, aid: str, image, version: Optional[int] = None) -> Achievement:
        updated = self.catalog.set_image(aid, image, version=version)
        self._replace(updated)
        return updated

    def _replace(self, updated: Achievement):
        with self._lock:
            if any(a.id == updated.id for a in self.achievements):
                self.achievements = [updated if a.id == updated.id else a for a in self.achievements]
            else:
                self.achievements = self.achievements + [updated]
            self.pending_changes = True

    # --- Dirty -> Idle ---
    def confirm_changes(self) -> int:
        """Publish this session's view to everyone else; returns the new revision."""
        with self._lock:
            if not self.pending_changes:
                return self.revision
            # re-read so the broadcast carries what storage actually holds
            self.achievements = self.catalog.list()
            self.revision = self.catalog.storage.bump_revision()
            self.pending_changes = False
            snapshot = list(self.achievements)
            revision = self.revision
        log.info("Published achievements revision %s (%d cards)", revision, len(snapshot))
        self.bus.publish(self, revision=revision, achievements=snapshot)
        return revision

    # --- inbound ---
    def _on_published(self, sender, revision: int = 0, achievements: Optional[List[Achievement]] = None, **_):
        if sender is self or achievements is None:
            return
        with self._lock:
            if self.pending_changes:
                log.debug("Ignoring revision %s while changes are pending", revision)
                return
            self.achievements = list(achievements)
            self.revision = max(self.revision, revision)

    def poll(self, now: Optional[float] = None, force: bool = False) -> bool:
        """
        Re-read the persisted list when Idle and the interval has elapsed.
        Returns True when the cached list was replaced.
        """
        now = self.clock() if now is None else now
        with self._lock:
            if self.pending_changes:
                return False
            if not force and self._last_poll is not None and now - self._last_poll < self.poll_interval:
                return False
            self._last_poll = now
            fresh = self.catalog.list()
            revision = self.catalog.storage.get_revision()
            changed = fresh != self.achievements
            if changed:
                self.achievements = fresh
            self.revision = revision
            return changed

    def snapshot(self) -> Dict:
        with self._lock:
            return {
                "pending": self.pending_changes,
                "revision": self.revision,
                "achievements": list(self.achievements),
            }


class SessionRegistry:
    """
    Client id -> SyncSession, created lazily.

    Sessions idle longer than idle_ttl are closed and dropped, and at most
    max_sessions are kept (least recently used go first).
    """

    def __init__(self, catalog: AchievementCatalog, bus: ChangeBus, poll_interval: float = 5.0,
                 idle_ttl: float = 1800.0, max_sessions: int = 1000,
                 clock: Callable[[], float] = time.monotonic):
        self.catalog = catalog
        self.bus = bus
        self.poll_interval = poll_interval
        self.idle_ttl = idle_ttl
        self.max_sessions = max_sessions
        self.clock = clock
        # ordered by last use, oldest first
        self._sessions: "OrderedDict[str, SyncSession]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def get(self, client_id: str) -> SyncSession:
        now = self.clock()
        created = False
        with self._lock:
            s = self._sessions.get(client_id)
            if s is None:
                s = SyncSession(self.catalog, self.bus, poll_interval=self.poll_interval, clock=self.clock)
                self._sessions[client_id] = s
                created = True
            self._sessions.move_to_end(client_id)
            self._last_seen[client_id] = now
            evicted = self._evict_locked(now)
        for old in evicted:
            old.close()
        if created:
            try:
                s.load()
            except Exception:
                # an empty session must not stand in for the real list
                self.discard(client_id)
                raise
        return s

    def transient(self) -> SyncSession:
        """A loaded session that is neither registered nor subscribed to the bus."""
        s = SyncSession(self.catalog, self.bus, poll_interval=self.poll_interval,
                        clock=self.clock, subscribe=False)
        s.load()
        return s

    def sweep(self) -> int:
        """Drop idle sessions now; returns how many were closed."""
        with self._lock:
            evicted = self._evict_locked(self.clock())
        for old in evicted:
            old.close()
        return len(evicted)

    def _evict_locked(self, now: float) -> List[SyncSession]:
        evicted = []
        for cid in list(self._sessions):
            if now - self._last_seen[cid] < self.idle_ttl:
                break
            evicted.append(self._pop_locked(cid))
        while len(self._sessions) > self.max_sessions:
            evicted.append(self._pop_locked(next(iter(self._sessions))))
        if evicted:
            log.debug("Evicted %d sync sessions", len(evicted))
        return evicted

    def _pop_locked(self, client_id: str) -> Optional[SyncSession]:
        self._last_seen.pop(client_id, None)
        return self._sessions.pop(client_id, None)

    def discard(self, client_id: str):
        with self._lock:
            s = self._pop_locked(client_id)
        if s is not None:
            s.close()

    def close_all(self):
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._last_seen.clear()
        for s in sessions:
            s.close()

    def __len__(self):
        return len(self._sessions)
