import unittest

import pytest

from alerts.catalog import CATALOG, _build, all_alert_keys, definitions_for_group, get_definition, groups_for_cadence
from alerts.compound import COMPOUND_ALERTS
from alerts.registry import ALERTS, Cadence, DataGroup, job_points, new_ids


class CatalogTests(unittest.TestCase):
    def test_keys_are_unique_and_match(self):
        keys = all_alert_keys()
        self.assertEqual(len(keys), len(set(keys)))
        for key, definition in CATALOG.items():
            self.assertEqual(key, definition.key)

    def test_duplicate_key_rejected(self):
        with self.assertRaises(ValueError):
            _build(ALERTS, {"ENERGY_FULL": ALERTS["ENERGY_FULL"]})

    def test_catalog_is_read_only(self):
        with self.assertRaises(TypeError):
            CATALOG["NEW"] = ALERTS["ENERGY_FULL"]

    def test_compound_definitions_flagged(self):
        for definition in COMPOUND_ALERTS.values():
            self.assertTrue(definition.compound)
        self.assertFalse(get_definition("ENERGY_FULL").compound)

    def test_group_lookup_keeps_simple_before_compound(self):
        keys = [d.key for d in definitions_for_group(DataGroup.BARS)]
        self.assertEqual(keys[0], "ENERGY_FULL")
        self.assertLess(keys.index("DRUG_READY"), keys.index("ENERGY_GYM_OPTIMAL"))
        self.assertEqual(definitions_for_group("unknown"), ())

    def test_every_group_has_a_cadence(self):
        scheduled = set()
        for cadence in (Cadence.FAST, Cadence.MEDIUM, Cadence.SLOW):
            scheduled.update(groups_for_cadence(cadence))
        for definition in CATALOG.values():
            self.assertIn(definition.data_group, scheduled)
            self.assertIn(definition.data_group, groups_for_cadence(definition.cadence))

    def test_unknown_key(self):
        self.assertIsNone(get_definition("NOPE"))


@pytest.mark.parametrize("prev, curr", [
    ({}, {}),
    ({"energy": None}, {"energy": {"current": None}}),
    ({"cooldowns": "bad"}, {"travel": {}, "messages": [], "events": None}),
    ({"life": {"maximum": 0}}, {"life": {"current": 5, "maximum": 0}}),
])
def test_sparse_payloads_never_raise(prev, curr):
    for definition in CATALOG.values():
        definition.evaluate(prev, curr, {})
        definition.should_reset(prev, curr)
        definition.render(curr, prev, {})


def test_zero_maximum_is_never_full():
    energy_full = get_definition("ENERGY_FULL")
    assert not energy_full.evaluate({}, {"energy": {"current": 0, "maximum": 0}}, {})


def test_drug_cooldown_fires_once_on_clear():
    drug = get_definition("DRUG_READY")
    series = [{"cooldowns": {"drug": 120}}, {"cooldowns": {"drug": 45}}, {"cooldowns": {"drug": 0}}]
    prev, fired = {}, []
    for curr in series:
        fired.append(drug.evaluate(prev, curr, {}))
        prev = curr
    assert fired == [False, False, True]


def test_travel_landing_abroad_vs_home():
    completed, returning = get_definition("TRAVEL_COMPLETED"), get_definition("TRAVEL_RETURNING")
    prev = {"travel": {"destination": "Japan", "time_left": 30}}
    abroad = {"travel": {"destination": "Japan", "time_left": 0}}
    assert completed.evaluate(prev, abroad, {})
    assert not returning.evaluate(prev, abroad, {})
    assert completed.render(abroad, prev, {})[0] == "Arrived at **Japan**!"

    prev_home = {"travel": {"destination": "Torn", "time_left": 30}}
    home = {"travel": {"destination": "Torn", "time_left": 0}}
    assert returning.evaluate(prev_home, home, {})
    assert not completed.evaluate(prev_home, home, {})


def test_cash_drop_uses_configured_threshold():
    cash = get_definition("CASH_DROP")
    prev, curr = {"money_onhand": 1_000_000}, {"money_onhand": 600_000}
    assert not cash.evaluate(prev, curr, {"cash_drop_threshold": 500_000})
    assert cash.evaluate(prev, curr, {"cash_drop_threshold": 400_000})
    assert cash.render(curr, prev, {})[0] == "Cash dropped by **$400,000**"
    assert cash.should_reset(prev, curr)


def test_new_message_lines_name_sender():
    msg = get_definition("NEW_MESSAGE")
    prev = {"messages": {"1": {"name": "A", "title": "old"}}}
    curr = {"messages": {"1": {"name": "A", "title": "old"}, "2": {"name": "Bob", "title": "Hi"},
                         "3": {"name": "Eve", "title": "Yo"}}}
    assert new_ids(prev, curr, "messages") == ["2", "3"]
    assert msg.render(curr, prev, {}) == ["From: **Bob**", "Subject: Hi", "*+1 more messages*"]


def test_new_events_are_stripped_and_capped():
    events = get_definition("NEW_EVENT")
    curr = {"events": {str(i): {"event": f"<a href='x'>Player{i}</a> attacked you"} for i in range(5)}}
    lines = events.render(curr, {}, {})
    assert lines[0] == "Player0 attacked you"
    assert lines[-1] == "*+2 more events*"
    assert len(lines) == 4


def test_job_points_prefers_company_breakdown():
    assert job_points({"jobpoints": {"companies": {"1": {"jobpoints": 3}, "2": {"jobpoints": 4}}}}) == 7
    assert job_points({"job": {"company": {"job_points": 5}}}) == 5
    assert job_points({}) == 0


def test_low_life_needs_both_ratios():
    low_life = get_definition("LOW_LIFE_WARNING")
    curr = {"life": {"current": 100, "maximum": 1000}}
    assert not low_life.evaluate({}, curr, {})
    assert low_life.evaluate({"life": {"current": 900, "maximum": 1000}}, curr, {})


def test_gym_combo_needs_happy_bonus():
    gym = get_definition("ENERGY_GYM_OPTIMAL")
    base = {"energy": {"current": 150, "maximum": 150}}
    assert not gym.evaluate({}, dict(base, happy={"current": 100, "maximum": 1000}), {})
    assert gym.evaluate({}, dict(base, happy={"current": 950, "maximum": 1000}), {})
