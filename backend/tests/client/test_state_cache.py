from decimal import Decimal

from timetrack.client.state_cache import CachedState, StateCache


def test_missing_file_loads_empty_state(tmp_path):
    state = StateCache(tmp_path / "state.json").load()
    assert state.currentEntry is None
    assert state.recentEntries == []
    assert state.earnings == Decimal("0.00")


def test_save_and_load_running_entry(tmp_path, entry_factory, client_clock):
    cache = StateCache(tmp_path / "cache" / "state.json")
    entry = entry_factory(description="writing")

    cache.save(CachedState(currentEntry=entry, recentEntries=[entry], earnings=Decimal("3.33"), savedAt=client_clock()))
    loaded = cache.load()

    assert loaded.currentEntry.id == "e1"
    assert loaded.currentEntry.isRunning is True
    assert loaded.currentEntry.hourlyRateSnapshot == Decimal("100.00")
    assert loaded.earnings == Decimal("3.33")
    assert not (tmp_path / "cache" / "state.json.tmp").exists()


def test_corrupt_cache_is_discarded(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert StateCache(path).load() == CachedState()


def test_clear(tmp_path):
    cache = StateCache(tmp_path / "state.json")
    cache.save(CachedState())
    cache.clear()
    cache.clear()
    assert not (tmp_path / "state.json").exists()
