"""Tests for HitoSession: config loading, optimistic saves and rollback."""

import asyncio
import os

import pytest

from conftest import EventRecorder, FakeGateway, MockConfigManager, StepClock, make_images, run
from config.hotkeys import KeyEvent
from core.errors import (
    CategoryValidationError,
    HotkeyValidationError,
    PersistenceError,
    TransportUnavailableError,
)
from core.event_system import EventSystem, EventType
from core.models import Category, CategoryAssignment, ConfigData, FilterOptions, SortOption
from core.session import HitoSession, split_config_path


def P(name):
    return f"/photos/{name}"


def _session(gateway, settings=None):
    events = EventSystem()
    s = HitoSession(gateway, events, settings or MockConfigManager(), clock=StepClock())
    s.recorder = EventRecorder(events)
    run(s.open_directory("/photos", make_images("a.jpg", "b.jpg", "c.jpg")))
    return s


# ---------------------------------------------------------------------------
# 1. Loading
# ---------------------------------------------------------------------------


class TestLoad:

    def test_first_run_seeds_default_hotkeys(self):
        gateway = FakeGateway(config=None)
        s = _session(gateway)
        chords = [(h.key, h.action) for h in s.hotkeys.hotkeys]
        assert chords == [("J", "previous_image"), ("K", "next_image")]
        assert len(gateway.saves) == 1
        assert [h.key for h in gateway.saves[0].hotkeys] == ["J", "K"]

    def test_existing_config_is_loaded(self):
        config = ConfigData(
            categories=[Category(id="c1", name="Keep", color="#22c55e")],
            image_categories={P("a.jpg"): [CategoryAssignment("c1", "2024-01-01T00:00:00Z")]},
        )
        gateway = FakeGateway(config)
        s = _session(gateway)
        assert s.store.category_names() == {"c1": "Keep"}
        assert s.store.assigned_ids(P("a.jpg")) == ["c1"]
        assert s.hotkeys.hotkeys == []
        assert gateway.saves == []

    def test_unreadable_config_raises(self):
        gateway = FakeGateway(ConfigData())
        gateway.load_error = PersistenceError("Malformed config")
        s = HitoSession(gateway, EventSystem(), MockConfigManager())
        with pytest.raises(PersistenceError):
            run(s.open_directory("/photos", []))

    def test_unreachable_config_clears_previous_directory(self):
        config = ConfigData(
            categories=[Category(id="c1", name="Keep", color="#22c55e")],
            image_categories={P("a.jpg"): [CategoryAssignment("c1", "2024-01-01T00:00:00Z")]},
        )
        gateway = FakeGateway(config)
        s = _session(gateway)
        run(s.add_hotkey("X", action="next_image"))

        gateway.load_error = TransportUnavailableError("no backend")
        run(s.open_directory("/other", make_images("z.jpg", directory="/other")))
        assert s.store.categories == []
        assert s.store.assignments == {}
        assert s.hotkeys.hotkeys == []

    def test_custom_config_path(self):
        gateway = FakeGateway(ConfigData())
        s = HitoSession(gateway, EventSystem(), MockConfigManager())
        s.config_file_path = "/configs/shoot.json"
        run(s.open_directory("/photos", make_images("a.jpg")))
        run(s.save())
        assert gateway.save_targets[-1] == ("/configs", "shoot.json")

    @pytest.mark.parametrize("path,expected", [
        ("/configs/shoot.json", ("/configs", "shoot.json")),
        ("C:\\configs\\shoot.json", ("C:\\configs", "shoot.json")),
        ("shoot.json", ("/photos", "shoot.json")),
        ("/shoot.json", ("/", "shoot.json")),
    ])
    def test_split_config_path(self, path, expected):
        assert split_config_path(path, "/photos") == expected


# ---------------------------------------------------------------------------
# 2. Categories
# ---------------------------------------------------------------------------


class TestCategories:

    def test_create_saves_and_binds_digit(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        category = run(s.create_category("  Keep ", "#22c55e"))

        assert category.name == "Keep"
        assert [(h.key, h.action) for h in s.hotkeys.hotkeys] == [("1", f"toggle_category_{category.id}")]
        assert gateway.saves[-1].hotkeys[0].key == "1"
        assert gateway.saves[-1].categories == [category]

    def test_second_category_gets_next_digit(self):
        s = _session(FakeGateway(ConfigData()))
        run(s.create_category("Keep", "#22c55e"))
        run(s.create_category("Reject", "#ef4444"))
        assert [h.key for h in s.hotkeys.hotkeys] == ["1", "2"]

    def test_create_picks_palette_colour(self):
        s = _session(FakeGateway(ConfigData()))
        category = run(s.create_category("Keep", auto_hotkey=False))
        assert category.color.startswith("#") and len(category.color) == 7
        assert s.hotkeys.hotkeys == []

    def test_invalid_input_touches_nothing(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        with pytest.raises(CategoryValidationError):
            run(s.create_category("", "#22c55e"))
        assert s.store.categories == []
        assert gateway.saves == []

    def test_create_rolls_back_on_save_failure(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        gateway.save_error = PersistenceError("disk full")
        with pytest.raises(PersistenceError):
            run(s.create_category("Keep", "#22c55e"))
        assert s.store.categories == []
        assert s.hotkeys.hotkeys == []
        assert s.recorder.messages(EventType.ERROR) == ["Failed to save category: disk full"]

    def test_hotkey_failure_after_category_saved_is_a_warning(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)

        original_save = gateway.save_config
        calls = []

        async def fail_second(directory, filename, data):
            calls.append(data)
            if len(calls) == 2:
                raise PersistenceError("disk full")
            await original_save(directory, filename, data)

        gateway.save_config = fail_second
        category = run(s.create_category("Keep", "#22c55e"))

        assert s.store.get_category(category.id) is not None
        assert s.hotkeys.hotkeys == []
        notifications = s.recorder.of(EventType.NOTIFICATION)
        assert [n.level for n in notifications] == ["warning"]

    def test_transport_unavailable_keeps_change(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        gateway.save_error = TransportUnavailableError("no directory")
        category = run(s.create_category("Keep", "#22c55e", auto_hotkey=False))
        assert s.store.get_category(category.id) is not None

    def test_update_category(self):
        s = _session(FakeGateway(ConfigData()))
        keep = run(s.create_category("Keep", "#22c55e", auto_hotkey=False))
        reject = run(s.create_category("Reject", "#ef4444", auto_hotkey=False))
        updated = run(s.update_category(keep.id, name="Keepers", mutually_exclusive_with=[reject.id]))
        assert updated.name == "Keepers"
        assert s.store.get_category(keep.id).mutually_exclusive_with == frozenset({reject.id})

    def test_update_rejects_duplicate_name(self):
        s = _session(FakeGateway(ConfigData()))
        keep = run(s.create_category("Keep", "#22c55e", auto_hotkey=False))
        run(s.create_category("Reject", "#ef4444", auto_hotkey=False))
        with pytest.raises(CategoryValidationError):
            run(s.update_category(keep.id, name="reject"))

    def test_delete_cascades(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        keep = run(s.create_category("Keep", "#22c55e"))
        run(s.toggle_category(P("a.jpg"), keep.id))
        s.set_filters(FilterOptions(category_id=keep.id))

        assert run(s.delete_category(keep.id)) is True

        assert s.store.categories == []
        assert s.store.assignments == {}
        assert [h.action for h in s.hotkeys.hotkeys] == [""]
        assert s.collection.filters.category_id == ""
        assert gateway.saves[-1].image_categories == {}

    def test_delete_rolls_back(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        keep = run(s.create_category("Keep", "#22c55e"))
        run(s.toggle_category(P("a.jpg"), keep.id))
        gateway.save_error = PersistenceError("read-only")

        with pytest.raises(PersistenceError):
            run(s.delete_category(keep.id))

        assert s.store.get_category(keep.id) is not None
        assert s.store.assigned_ids(P("a.jpg")) == [keep.id]
        assert s.hotkeys.hotkeys[0].action == f"toggle_category_{keep.id}"


# ---------------------------------------------------------------------------
# 3. Assignments
# ---------------------------------------------------------------------------


class TestAssignments:

    def _with_category(self):
        gateway = FakeGateway(ConfigData(categories=[Category(id="c1", name="Keep", color="#22c55e")]))
        return _session(gateway), gateway

    def test_toggle_persists(self):
        s, gateway = self._with_category()
        assert run(s.toggle_category(P("a.jpg"), "c1")) is True
        assert list(gateway.saves[-1].image_categories) == [P("a.jpg")]
        assert run(s.toggle_category(P("a.jpg"), "c1")) is False
        assert gateway.saves[-1].image_categories == {}

    def test_toggle_rolls_back_on_failure(self):
        s, gateway = self._with_category()
        gateway.save_error = PersistenceError("disk full")
        with pytest.raises(PersistenceError):
            run(s.toggle_category(P("a.jpg"), "c1"))
        assert s.store.assignments == {}
        assert s.recorder.messages(EventType.ERROR) == ["Failed to save category assignment: disk full"]

    def test_failed_save_only_undoes_its_own_toggle(self):
        gateway = FakeGateway(ConfigData(categories=[
            Category(id="c1", name="Keep", color="#22c55e"),
            Category(id="c2", name="Print", color="#3b82f6"),
        ]))
        s = _session(gateway)

        async def scenario():
            gate = asyncio.Event()
            gateway.save_gate = gate
            gateway.fail_next_save = PersistenceError("disk full")
            first = asyncio.create_task(s.toggle_category(P("a.jpg"), "c1"))
            await asyncio.sleep(0)
            second = asyncio.create_task(s.toggle_category(P("a.jpg"), "c2"))
            await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(first, second, return_exceptions=True)

        failed, assigned = run(scenario())
        assert isinstance(failed, PersistenceError)
        assert assigned is True
        assert s.store.assigned_ids(P("a.jpg")) == ["c2"]
        assert [a.category_id for a in gateway.saves[-1].image_categories[P("a.jpg")]] == ["c2"]

    def test_rollback_does_not_bring_back_deleted_image(self):
        s, gateway = self._with_category()
        run(s.toggle_category(P("b.jpg"), "c1"))
        run(s.open_image(P("b.jpg")))

        async def scenario():
            gate = asyncio.Event()
            gateway.save_gate = gate
            gateway.fail_next_save = PersistenceError("disk full")
            toggle = asyncio.create_task(s.toggle_category(P("b.jpg"), "c1"))
            await asyncio.sleep(0)
            delete = asyncio.create_task(s.delete_current_image())
            for _ in range(10):
                await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(toggle, delete, return_exceptions=True)

        failed, deleted = run(scenario())
        assert isinstance(failed, PersistenceError)
        assert deleted is True
        assert not s.collection.contains(P("b.jpg"))
        assert s.store.assignments == {}

    def test_category_rollback_does_not_bring_back_deleted_image(self):
        s, gateway = self._with_category()
        run(s.toggle_category(P("b.jpg"), "c1"))
        run(s.open_image(P("b.jpg")))

        async def scenario():
            gate = asyncio.Event()
            gateway.save_gate = gate
            gateway.fail_next_save = PersistenceError("disk full")
            removal = asyncio.create_task(s.delete_category("c1"))
            await asyncio.sleep(0)
            delete = asyncio.create_task(s.delete_current_image())
            for _ in range(10):
                await asyncio.sleep(0)
            gate.set()
            return await asyncio.gather(removal, delete, return_exceptions=True)

        failed, deleted = run(scenario())
        assert isinstance(failed, PersistenceError)
        assert deleted is True
        assert s.store.get_category("c1") is not None
        assert s.store.assignments == {}

    def test_watch_drops_files_deleted_from_disk(self, tmp_path):
        for name in ("a.jpg", "b.jpg"):
            (tmp_path / name).write_bytes(b"x" * 64)
        removed = str(tmp_path / "a.jpg")
        gateway = FakeGateway(ConfigData(categories=[Category(id="c1", name="Keep", color="#22c55e")]))
        events = EventSystem()
        recorder = EventRecorder(events)
        s = HitoSession(gateway, events, MockConfigManager(), clock=StepClock())

        async def scenario():
            await s.open_directory(str(tmp_path), make_images("a.jpg", "b.jpg", directory=str(tmp_path)))
            await s.toggle_category(removed, "c1")
            watcher = s.watch()
            try:
                os.remove(removed)
                for _ in range(100):
                    if not s.collection.contains(removed) and gateway.saves[-1].image_categories == {}:
                        break
                    await asyncio.sleep(0.05)
            finally:
                watcher.stop()

        run(scenario())
        assert not s.collection.contains(removed)
        assert gateway.saves[-1].image_categories == {}
        assert [e.image_path for e in recorder.of(EventType.IMAGE_DELETED)] == [removed]

    def test_toggle_unknown_category(self):
        s, gateway = self._with_category()
        with pytest.raises(CategoryValidationError):
            run(s.toggle_category(P("a.jpg"), "ghost"))

    def test_assign_unchanged_does_not_save(self):
        s, gateway = self._with_category()
        run(s.assign_category(P("a.jpg"), "c1"))
        saves = len(gateway.saves)
        assert run(s.assign_category(P("a.jpg"), "c1")) is False
        assert len(gateway.saves) == saves

    def test_last_categorized_sort(self):
        s, _ = self._with_category()
        run(s.toggle_category(P("c.jpg"), "c1"))
        run(s.toggle_category(P("a.jpg"), "c1"))
        s.set_sort(SortOption.LAST_CATEGORIZED)
        assert [img.path for img in s.view()] == [P("b.jpg"), P("c.jpg"), P("a.jpg")]

    def test_counts(self):
        s, _ = self._with_category()
        run(s.toggle_category(P("a.jpg"), "c1"))
        run(s.toggle_category(P("b.jpg"), "c1"))
        assert s.category_counts() == {"c1": 2}

    def test_forget_image_drops_assignments(self):
        s, gateway = self._with_category()
        run(s.toggle_category(P("a.jpg"), "c1"))
        assert run(s.forget_image(P("a.jpg"))) is True
        assert not s.collection.contains(P("a.jpg"))
        assert gateway.saves[-1].image_categories == {}
        assert run(s.forget_image(P("a.jpg"))) is False


# ---------------------------------------------------------------------------
# 4. Hotkeys through the session
# ---------------------------------------------------------------------------


class TestHotkeys:

    def test_add_update_delete(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        hotkey = run(s.add_hotkey("n", [], "next_image"))
        assert gateway.saves[-1].hotkeys[0].key == "N"

        run(s.update_hotkey(hotkey.id, "m", ["Ctrl"], "previous_image"))
        assert s.hotkeys.get(hotkey.id).modifiers == ("Ctrl",)

        assert run(s.delete_hotkey(hotkey.id)) is True
        assert gateway.saves[-1].hotkeys == []

    def test_duplicate_rejected_without_save(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        run(s.add_hotkey("N", ["Ctrl"], "next_image"))
        saves = len(gateway.saves)
        with pytest.raises(HotkeyValidationError):
            run(s.add_hotkey("n", ["Cmd"], "previous_image"))
        assert len(gateway.saves) == saves

    def test_add_rolls_back(self):
        gateway = FakeGateway(ConfigData())
        s = _session(gateway)
        gateway.save_error = PersistenceError("disk full")
        with pytest.raises(PersistenceError):
            run(s.add_hotkey("N", [], "next_image"))
        assert s.hotkeys.hotkeys == []

    def test_auto_assign_runs_out_of_keys(self):
        settings = MockConfigManager({"hotkeys": {"auto_assign_keys": ["1"]}})
        s = _session(FakeGateway(ConfigData()), settings)
        run(s.create_category("Keep", "#22c55e"))
        second = run(s.create_category("Reject", "#ef4444"))
        assert run(s.auto_assign_hotkey(second.id)) is False
        assert len(s.hotkeys.hotkeys) == 1
        assert s.recorder.of(EventType.NOTIFICATION) == []

    def test_toggle_next_hotkey_flow(self):
        gateway = FakeGateway(ConfigData(categories=[Category(id="c1", name="Keep", color="#22c55e")]))
        s = _session(gateway)
        run(s.add_hotkey("1", [], "toggle_category_next_c1"))
        run(s.open_image(P("a.jpg")))

        assert run(s.handle_key_event(KeyEvent(key="1"))) is True

        assert s.store.assigned_ids(P("a.jpg")) == ["c1"]
        assert s.navigator.current_path == P("b.jpg")

    def test_builtin_viewer_keys(self):
        s = _session(FakeGateway(ConfigData()))
        run(s.open_image(P("a.jpg")))
        assert run(s.handle_key_event(KeyEvent(key="ArrowRight"))) is True
        assert s.navigator.current_path == P("b.jpg")
        assert run(s.handle_key_event(KeyEvent(key="ArrowLeft"))) is True
        assert s.navigator.current_path == P("a.jpg")
        assert run(s.handle_key_event(KeyEvent(key="Escape"))) is True
        assert not s.navigator.is_open

    def test_arrow_keys_fall_through_when_closed(self):
        s = _session(FakeGateway(ConfigData()))
        assert run(s.handle_key_event(KeyEvent(key="ArrowRight"))) is False

    def test_failed_hotkey_toggle_is_consumed_and_rolled_back(self):
        gateway = FakeGateway(ConfigData(categories=[Category(id="c1", name="Keep", color="#22c55e")]))
        s = _session(gateway)
        run(s.add_hotkey("1", [], "toggle_category_c1"))
        run(s.open_image(P("a.jpg")))
        gateway.save_error = PersistenceError("disk full")

        assert run(s.handle_key_event(KeyEvent(key="1"))) is True
        assert s.store.assignments == {}
        assert s.navigator.current_path == P("a.jpg")
