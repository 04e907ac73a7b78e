import json
import tempfile
import unittest

import pytest

from alerts.state import SubjectStateStore
from persistence import DebouncedDocument, JsonDocumentStore, MemoryDocumentStore


class StepClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class JsonDocumentStoreTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.store = JsonDocumentStore(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_document_is_empty(self):
        self.assertEqual(self.store.load("alert_state"), {})

    def test_round_trip(self):
        self.store.save("alert_state", {"1": {"flags": {"ENERGY_FULL": True}}})
        self.assertEqual(self.store.load("alert_state"), {"1": {"flags": {"ENERGY_FULL": True}}})

    def test_corrupt_state_file_recovers(self):
        path = self.store.directory / "alert_state.json"
        path.write_text("{not json")
        self.assertEqual(self.store.load("alert_state"), {})
        self.assertFalse(path.exists())
        self.assertTrue((self.store.directory / "alert_state.json.bak").exists())

    def test_non_object_root_is_rotated(self):
        path = self.store.directory / "alert_state.json"
        path.write_text("[1, 2]")
        self.assertEqual(self.store.load("alert_state"), {})
        self.assertTrue((self.store.directory / "alert_state.json.bak").exists())


class DebouncedDocumentTests(unittest.TestCase):
    def test_writes_are_debounced(self):
        backend = MemoryDocumentStore()
        clock = StepClock()
        doc = DebouncedDocument(backend, "ns", min_interval=5.0, clock=clock)

        doc.data["a"] = 1
        doc.touch()
        self.assertEqual(backend.load("ns"), {"a": 1})
        self.assertFalse(doc.dirty)

        clock.now += 1
        doc.data["a"] = 2
        doc.touch()
        self.assertEqual(backend.load("ns"), {"a": 1})
        self.assertTrue(doc.dirty)

        clock.now += 5
        self.assertTrue(doc.flush_if_due())
        self.assertEqual(backend.load("ns"), {"a": 2})

    def test_failed_write_keeps_memory_authoritative(self):
        class BrokenBackend(MemoryDocumentStore):
            def save(self, namespace, data):
                raise OSError("disk full")

        doc = DebouncedDocument(BrokenBackend(), "ns", clock=StepClock())
        doc.data["a"] = 1
        doc.touch()
        self.assertTrue(doc.dirty)
        self.assertEqual(doc.data, {"a": 1})
        self.assertFalse(doc.flush(force=True))

    def test_loads_existing_document(self):
        backend = MemoryDocumentStore()
        backend.save("ns", {"x": {"y": 1}})
        self.assertEqual(DebouncedDocument(backend, "ns").data, {"x": {"y": 1}})


@pytest.mark.asyncio
async def test_trailing_change_flushed_on_exit(tmp_path):
    backend = JsonDocumentStore(str(tmp_path))
    clock = StepClock()
    doc = DebouncedDocument(backend, "alert_state", min_interval=5.0, poll_interval=60.0, clock=clock)
    async with doc:
        doc.data["first"] = True
        doc.touch()
        doc.data["second"] = True
        doc.touch()
        assert doc.dirty
    saved = json.loads((tmp_path / "alert_state.json").read_text())
    assert saved == {"first": True, "second": True}


@pytest.mark.asyncio
async def test_background_flusher_picks_up_trailing_change():
    import asyncio

    backend = MemoryDocumentStore()
    clock = StepClock()
    doc = DebouncedDocument(backend, "ns", min_interval=5.0, poll_interval=0.01, clock=clock)
    async with doc:
        doc.data["a"] = 1
        doc.touch()
        doc.data["a"] = 2
        doc.touch()
        clock.now += 10
        await asyncio.sleep(0.05)
        assert backend.load("ns") == {"a": 2}
        assert not doc.dirty


class SubjectStateStoreTests(unittest.TestCase):
    def setUp(self):
        self.clock = StepClock(1_700_000_000.0)
        self.backend = MemoryDocumentStore()
        self.doc = DebouncedDocument(self.backend, "alert_state", min_interval=0, clock=self.clock)
        self.store = SubjectStateStore(self.doc, clock=self.clock)

    def test_observed_is_a_copy(self):
        self.store.merge_observed("1", {"energy": {"current": 5}})
        observed = self.store.observed("1")
        observed["energy"] = "mutated"
        self.assertEqual(self.store.observed("1"), {"energy": {"current": 5}})

    def test_last_alert_persisted_in_epoch_ms(self):
        self.store.set_last_fire_at("1", "ENERGY_FULL", 1_700_000_000.5)
        self.assertEqual(self.backend.load("alert_state")["1"]["lastAlert"]["ENERGY_FULL"], 1_700_000_000_500)
        self.assertEqual(self.store.last_fire_at("1", "ENERGY_FULL"), 1_700_000_000.5)

    def test_cooldown_window(self):
        self.assertFalse(self.store.is_on_cooldown("1", "K", 60, self.clock()))
        self.store.set_last_fire_at("1", "K", self.clock())
        self.assertTrue(self.store.is_on_cooldown("1", "K", 60, self.clock() + 59))
        self.assertFalse(self.store.is_on_cooldown("1", "K", 60, self.clock() + 60))
        self.assertEqual(self.store.remaining_cooldown("1", "K", 60, self.clock() + 0.5), 60)

    def test_state_survives_restart(self):
        self.store.set_flag("1", "ENERGY_FULL", True)
        self.store.merge_observed("1", {"energy": {"current": 100, "maximum": 100}})
        reopened = SubjectStateStore(DebouncedDocument(self.backend, "alert_state"), clock=self.clock)
        self.assertTrue(reopened.get_flag("1", "ENERGY_FULL"))
        self.assertEqual(reopened.observed("1")["energy"]["current"], 100)

    def test_remove_subject(self):
        self.store.set_flag("1", "A", True)
        self.store.set_flag("2", "A", True)
        self.assertTrue(self.store.remove_subject("1"))
        self.assertFalse(self.store.remove_subject("1"))
        self.assertEqual(self.store.tracked_subjects(), ["2"])
        self.store.flush()
        self.assertEqual(list(self.backend.load("alert_state")), ["2"])

    def test_fractional_ms_fire_never_ends_cooldown_early(self):
        fired = 1_700_000_000.0004
        self.store.set_last_fire_at("1", "K", fired)
        self.assertTrue(self.store.is_on_cooldown("1", "K", 60, fired + 59.9999))
        self.assertFalse(self.store.is_on_cooldown("1", "K", 60, fired + 60.002))
