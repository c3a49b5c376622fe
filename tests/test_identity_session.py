import pytest

from analytics_pipeline.errors import StorageError
from analytics_pipeline.identity import ClientIdStore
from analytics_pipeline.logger import DebugLogger
from analytics_pipeline.models import UUID_RE
from analytics_pipeline.session import SessionManager
from analytics_pipeline.storage import (
    CLIENT_ID_KEY,
    SESSION_KEY,
    USER_PROPERTIES_KEY,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
)
from analytics_pipeline.user_properties import UserPropertyStore

pytestmark = pytest.mark.unit


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance_minutes(self, minutes):
        self.now += minutes * 60


class BrokenStore(KeyValueStore):
    def get(self, key):
        raise StorageError("storage offline")

    def set(self, key, value):
        raise StorageError("storage offline")

    def remove(self, key):
        raise StorageError("storage offline")


def test_client_id_is_stable_across_calls():
    store = ClientIdStore(MemoryStore())
    first = store.get_or_create_client_id()
    second = store.get_or_create_client_id()
    assert first == second
    assert UUID_RE.match(first)
    assert store.is_persistent is True


def test_client_id_survives_new_process_with_same_storage():
    storage = MemoryStore()
    first = ClientIdStore(storage).get_or_create_client_id()
    second = ClientIdStore(storage).get_or_create_client_id()
    assert first == second
    assert storage.get(CLIENT_ID_KEY) == first


def test_malformed_stored_client_id_is_replaced():
    storage = MemoryStore({CLIENT_ID_KEY: "not-a-uuid"})
    client_id = ClientIdStore(storage).get_or_create_client_id()
    assert client_id != "not-a-uuid"
    assert storage.get(CLIENT_ID_KEY) == client_id


def test_client_id_falls_back_to_memory_when_storage_fails():
    debug = DebugLogger(enabled=True)
    store = ClientIdStore(BrokenStore(), debug_logger=debug)
    client_id = store.get_or_create_client_id()
    assert UUID_RE.match(client_id)
    assert store.get_or_create_client_id() == client_id
    assert store.is_persistent is False
    assert any("process-lifetime" in entry for entry in debug.entries)


def test_regenerate_and_clear_client_id():
    storage = MemoryStore()
    store = ClientIdStore(storage)
    original = store.get_or_create_client_id()
    regenerated = store.regenerate_client_id()
    assert regenerated != original
    assert storage.get(CLIENT_ID_KEY) == regenerated
    assert store.clear_client_id() is True
    assert store.current_client_id() is None
    assert storage.get(CLIENT_ID_KEY) is None


def test_session_is_reused_within_timeout():
    clock = Clock()
    manager = SessionManager(MemoryStore(), time_fn=clock)
    first = manager.get_or_create_session_id()
    clock.advance_minutes(5)
    assert manager.get_or_create_session_id() == first


def test_session_expires_after_inactivity():
    clock = Clock()
    manager = SessionManager(MemoryStore(), time_fn=clock)
    first = manager.get_or_create_session_id()
    clock.advance_minutes(31)
    assert manager.get_or_create_session_id() != first


def test_activity_extends_session_window():
    clock = Clock()
    manager = SessionManager(MemoryStore(), time_fn=clock)
    first = manager.get_or_create_session_id()
    for _ in range(4):
        clock.advance_minutes(20)
        assert manager.get_or_create_session_id() == first
    session = manager.current_session()
    assert session.last_activity_at == clock.now
    assert manager.session_age_minutes() == 80
    assert manager.session_time_remaining_minutes() == 30


def test_session_expiry_boundary_is_exclusive():
    clock = Clock()
    manager = SessionManager(MemoryStore(), time_fn=clock)
    first = manager.get_or_create_session_id()
    clock.advance_minutes(30)
    assert manager.get_or_create_session_id() != first


def test_session_is_loaded_from_storage_on_cold_start():
    clock = Clock()
    storage = MemoryStore()
    first = SessionManager(storage, time_fn=clock).get_or_create_session_id()
    clock.advance_minutes(10)
    other = SessionManager(storage, time_fn=clock)
    assert other.get_or_create_session_id() == first
    assert storage.get(SESSION_KEY)["last_activity_at"] == clock.now


def test_session_falls_back_to_memory_when_storage_fails():
    clock = Clock()
    manager = SessionManager(BrokenStore(), time_fn=clock)
    first = manager.get_or_create_session_id()
    clock.advance_minutes(1)
    assert manager.get_or_create_session_id() == first


def test_regenerate_and_clear_session():
    clock = Clock()
    storage = MemoryStore()
    manager = SessionManager(storage, time_fn=clock)
    first = manager.get_or_create_session_id()
    assert manager.regenerate_session().session_id != first
    assert manager.clear_session() is True
    assert manager.current_session_id() is None
    assert manager.is_session_expired() is True
    assert storage.get(SESSION_KEY) is None


def test_json_file_store_persists_between_instances(tmp_path):
    path = tmp_path / "state" / "analytics.json"
    first = ClientIdStore(JsonFileStore(path)).get_or_create_client_id()
    second = ClientIdStore(JsonFileStore(path)).get_or_create_client_id()
    assert first == second
    assert path.exists()


def test_json_file_store_reports_corrupt_document(tmp_path):
    path = tmp_path / "analytics.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        JsonFileStore(path).get(CLIENT_ID_KEY)


def test_user_properties_persist_across_instances():
    storage = MemoryStore()
    store = UserPropertyStore(storage)
    assert store.set_user_property("user_type", "power_user") is True
    assert store.set_user_property("total_prompts_created", 12) is True
    reloaded = UserPropertyStore(storage)
    assert reloaded.get_user_properties() == {
        "user_type": "power_user",
        "total_prompts_created": 12,
    }
    assert storage.get(USER_PROPERTIES_KEY)["user_type"] == "power_user"


def test_user_property_values_are_sanitised_and_none_removes():
    store = UserPropertyStore(MemoryStore())
    assert store.set_user_property("bad name", "x") is False
    store.set_user_property("preferred_category", "c" * 80)
    assert len(store.get_user_properties()["preferred_category"]) == 36
    store.set_user_property("preferred_category", None)
    assert store.get_user_properties() == {}


def test_user_property_count_is_capped():
    store = UserPropertyStore(MemoryStore())
    for index in range(25):
        assert store.set_user_property(f"prop_{index}", index) is True
    assert store.set_user_property("one_too_many", 1) is False
    assert store.set_user_property("prop_0", 99) is True


def test_user_properties_survive_broken_storage():
    debug = DebugLogger(enabled=True)
    store = UserPropertyStore(BrokenStore(), debug_logger=debug)
    assert store.set_user_property("user_type", "new") is True
    assert store.get_user_properties() == {"user_type": "new"}
    assert store.clear_user_properties() is False
    assert store.get_user_properties() == {}
    assert any("user properties" in entry for entry in debug.entries)
