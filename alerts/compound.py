"""
Compound alert definitions: conditions combining several fields of one data group.
"""
from typing import Dict, List

from alerts.registry import AlertDefinition, Cadence, DataGroup, Severity, State, bar_full
from utils import num, ratio


def _happy_at_least(state: State, share: float) -> bool:
    happy = ratio(state, "happy")
    return happy is not None and happy >= share


def _happy_pct(state: State) -> int:
    return round((ratio(state, "happy") or 0) * 100)


def _gym_combo(state: State) -> bool:
    return bar_full(state, "energy") and _happy_at_least(state, 0.9)


def _gym_optimal(prev: State, curr: State, config: Dict) -> bool:
    return _gym_combo(curr) and not _gym_combo(prev)


def _gym_combo_broken(prev: State, curr: State) -> bool:
    return not _gym_combo(curr)


def _gym_message(curr: State, prev: State, config: Dict) -> List[str]:
    return [
        f"Energy: **{num(curr, 'energy', 'current'):.0f}/{num(curr, 'energy', 'maximum'):.0f}** (Full)",
        f"Happy: **{_happy_pct(curr)}%** (Bonus active!)",
        "Perfect time to train for maximum gains!",
    ]


def _drug_happy_optimal(prev: State, curr: State, config: Dict) -> bool:
    drug_ready = num(curr, "cooldowns", "drug") == 0
    was_ready = num(prev, "cooldowns", "drug") == 0
    return drug_ready and not was_ready and _happy_at_least(curr, 0.95)


def _drug_used(prev: State, curr: State) -> bool:
    return num(curr, "cooldowns", "drug") > 0


def _drug_happy_message(curr: State, prev: State, config: Dict) -> List[str]:
    return [
        "Drug cooldown ready!",
        f"Happy: **{_happy_pct(curr)}%** (Optimal!)",
        "Take Xanax now for maximum energy refill.",
    ]


def _low_life(prev: State, curr: State, config: Dict) -> bool:
    current, previous = ratio(curr, "life"), ratio(prev, "life")
    if current is None or previous is None:
        return False
    return current < 0.25 <= previous


def _life_recovered(prev: State, curr: State) -> bool:
    life = ratio(curr, "life")
    return life is not None and life >= 0.25


def _low_life_message(curr: State, prev: State, config: Dict) -> List[str]:
    pct = round((ratio(curr, "life") or 0) * 100)
    return [
        f"Life: **{num(curr, 'life', 'current'):.0f}/{num(curr, 'life', 'maximum'):.0f}** ({pct}%)",
        "Consider using a medical item!",
    ]


_COMPOUND = [
    AlertDefinition(
        key="ENERGY_GYM_OPTIMAL",
        emoji="💪",
        title="Optimal Gym Time!",
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=900,
        severity=Severity.ACTION,
        condition=_gym_optimal,
        reset_condition=_gym_combo_broken,
        message=_gym_message,
        compound=True,
    ),
    AlertDefinition(
        key="DRUG_HAPPY_OPTIMAL",
        emoji="🎯",
        title="Optimal Drug Time!",
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=600,
        severity=Severity.ACTION,
        condition=_drug_happy_optimal,
        reset_condition=_drug_used,
        message=_drug_happy_message,
        compound=True,
    ),
    AlertDefinition(
        key="LOW_LIFE_WARNING",
        emoji="⚠️",
        title="Low Life Warning!",
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=300,
        severity=Severity.WARNING,
        condition=_low_life,
        reset_condition=_life_recovered,
        message=_low_life_message,
        compound=True,
    ),
]

COMPOUND_ALERTS = {definition.key: definition for definition in _COMPOUND}
