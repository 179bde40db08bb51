import pytest

from services.errors import StorageError
from services.sync import ChangeBus, SessionRegistry, SyncSession


class FakeClock:
    def __init__(self, t=100.0):
        self.t = t

    def __call__(self):
        return self.t


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return ChangeBus()


@pytest.fixture
def make_session(catalog, bus, clock):
    sessions = []

    def _make():
        s = SyncSession(catalog, bus, poll_interval=5.0, clock=clock)
        s.load()
        sessions.append(s)
        return s
    yield _make
    for s in sessions:
        s.close()


def _by_id(session, aid):
    return next(a for a in session.achievements if a.id == aid)


def test_mutation_marks_pending_and_confirm_clears_it(make_session, catalog):
    admin = make_session()
    assert not admin.has_pending_changes()
    a = _by_id(admin, "first-house")
    admin.update(dict(a.to_dict(), reward="Golden hoe"))
    assert admin.has_pending_changes()
    revision = admin.confirm_changes()
    assert not admin.has_pending_changes()
    assert revision == 1
    assert catalog.storage.get_revision() == 1


def test_confirm_without_changes_keeps_revision(make_session):
    admin = make_session()
    assert admin.confirm_changes() == 0


def test_confirm_broadcasts_to_other_sessions(make_session):
    admin, viewer = make_session(), make_session()
    a = _by_id(admin, "redstone-genius")
    admin.update(dict(a.to_dict(), unlocked=True))
    # not yet published
    assert _by_id(viewer, "redstone-genius").unlocked is False
    admin.confirm_changes()
    assert _by_id(viewer, "redstone-genius").unlocked is True
    assert viewer.revision == 1


def test_dirty_session_ignores_broadcasts(make_session):
    admin, other_admin = make_session(), make_session()
    other_admin.add({"title": "Draft", "description": "Unsaved idea", "rarity": "common",
                     "category": "building"})
    a = _by_id(admin, "first-house")
    admin.update(dict(a.to_dict(), title="Cozy Home"))
    admin.confirm_changes()
    assert _by_id(other_admin, "first-house").title == "Home Sweet Home"
    assert other_admin.has_pending_changes()


def test_poll_waits_for_interval(catalog, make_session, clock):
    viewer = make_session()
    a = catalog.get("garden-master")
    catalog.update(dict(a.to_dict(), unlocked=True))
    assert viewer.poll() is False
    clock.t += 4.9
    assert viewer.poll() is False
    clock.t += 0.2
    assert viewer.poll() is True
    assert _by_id(viewer, "garden-master").unlocked is True


def test_poll_with_explicit_now_and_force(catalog, make_session, clock):
    viewer = make_session()
    catalog.remove("pixel-artist")
    assert viewer.poll(now=clock.t + 1) is False
    assert viewer.poll(now=clock.t + 1, force=True) is True
    assert "pixel-artist" not in [a.id for a in viewer.achievements]
    # nothing new since
    assert viewer.poll(now=clock.t + 20) is False


def test_confirmed_change_reaches_session_in_other_process_within_one_interval(catalog, clock):
    # separate buses: no broadcast, only polling
    admin = SyncSession(catalog, ChangeBus(), clock=clock)
    viewer = SyncSession(catalog, ChangeBus(), clock=clock)
    admin.load()
    viewer.load()
    a = _by_id(admin, "bridge-builder")
    admin.update(dict(a.to_dict(), unlocked=True))
    admin.confirm_changes()
    assert viewer.poll(now=clock.t + viewer.poll_interval) is True
    assert _by_id(viewer, "bridge-builder").unlocked is True
    assert viewer.revision == 1


def test_pending_session_does_not_poll(make_session, catalog, clock):
    admin = make_session()
    admin.remove("skyscraper")
    assert admin.poll(now=clock.t + 60, force=True) is False
    assert admin.has_pending_changes()


def test_failed_mutation_leaves_cache_unchanged(make_session, catalog, monkeypatch):
    admin = make_session()
    before = list(admin.achievements)

    def boom(row, expected_version=None):
        raise RuntimeError("network down")
    monkeypatch.setattr(catalog.storage, "update_achievement", boom)
    a = _by_id(admin, "first-house")
    with pytest.raises(StorageError):
        admin.update(dict(a.to_dict(), unlocked=False))
    assert admin.achievements == before
    assert not admin.has_pending_changes()


def test_unlock_scenario_visible_to_viewer(catalog, bus):
    for a in catalog.list():
        catalog.remove(a.id)
    catalog.add({"id": "a1", "title": "First", "description": "The only card", "unlocked": False})
    admin = SyncSession(catalog, bus)
    viewer = SyncSession(catalog, bus)
    try:
        admin.load()
        viewer.load()
        assert [a.unlocked for a in viewer.achievements] == [False]
        card = admin.achievements[0]
        admin.update(dict(card.to_dict(), unlocked=True))
        admin.confirm_changes()
        assert [(a.id, a.unlocked) for a in viewer.achievements] == [("a1", True)]
    finally:
        admin.close()
        viewer.close()


def test_registry_reuses_and_discards_sessions(catalog, bus):
    reg = SessionRegistry(catalog, bus, poll_interval=5.0)
    s1 = reg.get("tab-1")
    assert reg.get("tab-1") is s1
    assert len(s1.achievements) == len(catalog.list())
    reg.get("tab-2")
    assert len(reg) == 2
    reg.discard("tab-1")
    assert len(reg) == 1
    assert reg.get("tab-1") is not s1
    reg.close_all()
    assert len(reg) == 0


def test_closed_session_stops_listening(make_session, bus):
    admin, viewer = make_session(), make_session()
    viewer.close()
    a = _by_id(admin, "first-house")
    admin.update(dict(a.to_dict(), title="Renamed"))
    admin.confirm_changes()
    assert _by_id(viewer, "first-house").title == "Home Sweet Home"


def test_registry_evicts_idle_sessions(catalog, bus, clock):
    reg = SessionRegistry(catalog, bus, idle_ttl=60.0, clock=clock)
    old = reg.get("tab-1")
    clock.t += 30
    reg.get("tab-2")
    clock.t += 45
    # tab-1 idle for 75s, tab-2 for 45s
    assert reg.sweep() == 1
    assert len(reg) == 1
    assert reg.get("tab-1") is not old
    reg.close_all()


def test_registry_caps_sessions_and_unsubscribes_evicted(catalog, bus, clock):
    reg = SessionRegistry(catalog, bus, max_sessions=3, clock=clock)
    for i in range(10):
        reg.get(f"tab-{i}")
        clock.t += 1
    assert len(reg) == 3
    assert len(bus.signal.receivers) == 3
    reg.close_all()
    assert len(bus.signal.receivers) == 0


def test_recently_used_session_survives_cap(catalog, bus, clock):
    reg = SessionRegistry(catalog, bus, max_sessions=2, clock=clock)
    first = reg.get("tab-1")
    reg.get("tab-2")
    reg.get("tab-1")
    reg.get("tab-3")
    assert reg.get("tab-1") is first
    assert len(reg) == 2
    reg.close_all()


def test_transient_session_is_not_registered(catalog, bus):
    reg = SessionRegistry(catalog, bus)
    s = reg.transient()
    assert len(reg) == 0
    assert len(bus.signal.receivers) == 0
    assert len(s.achievements) == len(catalog.list())
    s.close()


def test_registry_drops_session_that_failed_to_load(catalog, bus, monkeypatch):
    reg = SessionRegistry(catalog, bus)

    def boom():
        raise RuntimeError("database restarting")
    monkeypatch.setattr(catalog.storage, "list_achievements", boom)
    with pytest.raises(StorageError):
        reg.get("tab-1")
    assert len(reg) == 0
    assert len(bus.signal.receivers) == 0
