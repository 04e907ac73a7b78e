"""
Alert Registry - simple single-field alert definitions.

Each definition carries its own condition, reset and message functions:
- condition(prev, curr, config) -> bool: fires on a False -> True edge
- reset_condition(prev, curr) -> bool: clears the fired flag (re-arms)
- message(curr, prev, config) -> list of bullet lines
Missing fields count as 0 / empty so a sparse payload never raises.
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from utils import dig, format_money, num, strip_html

State = Dict[str, Any]


class Severity:
    ACTION = "action"    # subject should act
    INFO = "info"
    WARNING = "warning"  # potential risk


class DataGroup:
    """Remote API selections fetched together."""

    BARS = "bars,cooldowns"
    TRAVEL = "travel"
    EDUCATION = "education"
    JOB = "jobpoints"
    PROFILE = "basic"
    FINANCIAL = "money"
    MESSAGES = "messages"
    EVENTS = "events"


class Cadence:
    FAST = "FAST"
    MEDIUM = "MEDIUM"
    SLOW = "SLOW"


CADENCE_GROUPS = {
    Cadence.FAST: (DataGroup.BARS, DataGroup.TRAVEL, DataGroup.PROFILE, DataGroup.MESSAGES, DataGroup.EVENTS),
    Cadence.MEDIUM: (DataGroup.EDUCATION, DataGroup.FINANCIAL),
    Cadence.SLOW: (DataGroup.JOB,),
}


@dataclass(frozen=True)
class AlertDefinition:
    key: str
    emoji: str
    title: str
    data_group: str
    cadence: str
    cooldown_seconds: int
    severity: str
    condition: Callable[[State, State, Dict], bool]
    reset_condition: Callable[[State, State], bool]
    message: Callable[[State, State, Dict], List[str]]
    compound: bool = False

    def evaluate(self, prev: State, curr: State, config: Dict) -> bool:
        return bool(self.condition(prev, curr, config))

    def should_reset(self, prev: State, curr: State) -> bool:
        return bool(self.reset_condition(prev, curr))

    def render(self, curr: State, prev: State, config: Dict) -> List[str]:
        return [line for line in self.message(curr, prev, config) if line]


def _always(prev: State, curr: State) -> bool:
    return True


def _n(value: float):
    return int(value) if float(value).is_integer() else round(value, 2)


# --- resource bars -------------------------------------------------------

def bar_full(state: State, bar: str) -> bool:
    maximum = num(state, bar, "maximum")
    return maximum > 0 and num(state, bar, "current") >= maximum


def _bar_became_full(bar: str):
    def condition(prev: State, curr: State, config: Dict) -> bool:
        return bar_full(curr, bar) and not bar_full(prev, bar)
    return condition


def _bar_below_max(bar: str):
    def reset(prev: State, curr: State) -> bool:
        return num(curr, bar, "current") < num(curr, bar, "maximum")
    return reset


def _bar_message(bar: str, label: str, hint: str):
    def message(curr: State, prev: State, config: Dict) -> List[str]:
        return [
            f"{label}: **{_n(num(curr, bar, 'current'))}/{_n(num(curr, bar, 'maximum'))}**",
            hint,
        ]
    return message


def _bar_alert(key, emoji, title, bar, label, hint, cooldown, severity) -> AlertDefinition:
    return AlertDefinition(
        key=key,
        emoji=emoji,
        title=title,
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=cooldown,
        severity=severity,
        condition=_bar_became_full(bar),
        reset_condition=_bar_below_max(bar),
        message=_bar_message(bar, label, hint),
    )


# --- countdown timers (cooldowns, travel, education) ---------------------

def _cooldown_cleared(name: str):
    def condition(prev: State, curr: State, config: Dict) -> bool:
        return num(curr, "cooldowns", name) == 0 and num(prev, "cooldowns", name) > 0
    return condition


def _cooldown_running(name: str):
    def reset(prev: State, curr: State) -> bool:
        return num(curr, "cooldowns", name) > 0
    return reset


def _landed(prev: State, curr: State) -> bool:
    return num(prev, "travel", "time_left") > 0 and num(curr, "travel", "time_left") == 0


def _travel_completed(prev: State, curr: State, config: Dict) -> bool:
    return _landed(prev, curr) and dig(curr, "travel", "destination", default="") != "Torn"


def _travel_home(prev: State, curr: State, config: Dict) -> bool:
    return _landed(prev, curr) and dig(curr, "travel", "destination", default="") == "Torn"


def _travelling(prev: State, curr: State) -> bool:
    return num(curr, "travel", "time_left") > 0


def _travel_completed_message(curr: State, prev: State, config: Dict) -> List[str]:
    destination = dig(curr, "travel", "destination", default="destination")
    return [f"Arrived at **{destination}**!", "Check foreign stocks & perform actions."]


def _education_completed(prev: State, curr: State, config: Dict) -> bool:
    return num(curr, "education_timeleft") == 0 and num(prev, "education_timeleft") > 0


def _education_started(prev: State, curr: State) -> bool:
    return num(curr, "education_timeleft") > 0


# --- job ------------------------------------------------------------------

def job_points(state: State) -> float:
    """Company job points, from the jobpoints selection or the legacy job block."""
    companies = dig(state, "jobpoints", "companies", default={})
    if isinstance(companies, dict) and companies:
        return sum(num(company, "jobpoints") for company in companies.values())
    return num(state, "job", "company", "job_points")


def _job_points_appeared(prev: State, curr: State, config: Dict) -> bool:
    return job_points(curr) > 0 and job_points(prev) == 0


def _job_points_spent(prev: State, curr: State) -> bool:
    return job_points(curr) == 0


def _job_points_message(curr: State, prev: State, config: Dict) -> List[str]:
    return [f"Job points: **{_n(job_points(curr))}** available", "Use them before they expire!"]


# --- status ---------------------------------------------------------------

def _status(state: State) -> str:
    return str(dig(state, "status", "state", default="")).lower()


def _left_hospital(prev: State, curr: State, config: Dict) -> bool:
    return _status(prev) == "hospital" and _status(curr) == "okay"


def _in_hospital(prev: State, curr: State) -> bool:
    return _status(curr) == "hospital"


# --- financial ------------------------------------------------------------

def _cash_dropped(prev: State, curr: State, config: Dict) -> bool:
    threshold = (config or {}).get("cash_drop_threshold", 500_000)
    return num(prev, "money_onhand") - num(curr, "money_onhand") >= threshold


def _cash_drop_message(curr: State, prev: State, config: Dict) -> List[str]:
    drop = num(prev, "money_onhand") - num(curr, "money_onhand")
    return [f"Cash dropped by **{format_money(drop)}**", "Check for mugging or unexpected expenses."]


def _fees_increased(prev: State, curr: State, config: Dict) -> bool:
    min_delta = (config or {}).get("unpaid_fees_delta_min", 100_000)
    return num(curr, "unpaidfees") - num(prev, "unpaidfees") >= min_delta


def _fees_message(curr: State, prev: State, config: Dict) -> List[str]:
    increase = num(curr, "unpaidfees") - num(prev, "unpaidfees")
    return [
        f"Unpaid fees increased by **{format_money(increase)}**",
        f"Total unpaid: **{format_money(num(curr, 'unpaidfees'))}**",
    ]


# --- messages & events ----------------------------------------------------

def new_ids(prev: State, curr: State, field_name: str) -> List[str]:
    current = dig(curr, field_name, default={})
    previous = dig(prev, field_name, default={})
    if not isinstance(current, dict):
        return []
    seen = set(previous) if isinstance(previous, dict) else set()
    return [item_id for item_id in current if item_id not in seen]


def _has_new(field_name: str):
    def condition(prev: State, curr: State, config: Dict) -> bool:
        return len(new_ids(prev, curr, field_name)) > 0
    return condition


def _new_message_lines(curr: State, prev: State, config: Dict) -> List[str]:
    fresh = new_ids(prev, curr, "messages")
    if not fresh:
        return ["New message received"]
    msg = dig(curr, "messages", fresh[0], default={})
    if not isinstance(msg, dict):
        msg = {}
    lines = [f"From: **{msg.get('name') or 'Unknown'}**", f"Subject: {msg.get('title') or 'No subject'}"]
    if len(fresh) > 1:
        lines.append(f"*+{len(fresh) - 1} more messages*")
    return lines


def _new_event_lines(curr: State, prev: State, config: Dict) -> List[str]:
    fresh = new_ids(prev, curr, "events")
    lines = []
    for event_id in fresh[:3]:
        text = strip_html(str(dig(curr, "events", event_id, "event", default="")))
        if text:
            lines.append(text[:100])
    if len(fresh) > 3:
        lines.append(f"*+{len(fresh) - 3} more events*")
    return lines or ["New event occurred"]


def _fixed(*lines: str):
    def message(curr: State, prev: State, config: Dict) -> List[str]:
        return list(lines)
    return message


_SIMPLE = [
    _bar_alert("ENERGY_FULL", "⚡", "Energy Full!", "energy", "Energy", "Time to train or use energy!", 600, Severity.ACTION),
    _bar_alert("NERVE_FULL", "🧠", "Nerve Full!", "nerve", "Nerve", "Time to commit some crimes!", 600, Severity.ACTION),
    # happy refills slowly
    _bar_alert("HAPPY_FULL", "😊", "Happy Full!", "happy", "Happy", "Maximum happiness reached!", 1800, Severity.INFO),
    _bar_alert("LIFE_FULL", "❤️", "Life Full!", "life", "Life", "Fully healed and ready to fight!", 600, Severity.INFO),
    AlertDefinition(
        key="DRUG_READY",
        emoji="💊",
        title="Drug Cooldown Ready!",
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=300,
        severity=Severity.ACTION,
        condition=_cooldown_cleared("drug"),
        reset_condition=_cooldown_running("drug"),
        message=_fixed("Drug cooldown is over!", "Ready to take another drug."),
    ),
    AlertDefinition(
        key="BOOSTER_READY",
        emoji="💉",
        title="Booster Cooldown Ready!",
        data_group=DataGroup.BARS,
        cadence=Cadence.FAST,
        cooldown_seconds=300,
        severity=Severity.ACTION,
        condition=_cooldown_cleared("booster"),
        reset_condition=_cooldown_running("booster"),
        message=_fixed("Booster cooldown is over!", "Ready to use another booster."),
    ),
    AlertDefinition(
        key="TRAVEL_COMPLETED",
        emoji="✈️",
        title="Travel Completed!",
        data_group=DataGroup.TRAVEL,
        cadence=Cadence.FAST,
        cooldown_seconds=60,
        severity=Severity.ACTION,
        condition=_travel_completed,
        reset_condition=_travelling,
        message=_travel_completed_message,
    ),
    AlertDefinition(
        key="TRAVEL_RETURNING",
        emoji="🏠",
        title="Returned to Torn!",
        data_group=DataGroup.TRAVEL,
        cadence=Cadence.FAST,
        cooldown_seconds=60,
        severity=Severity.INFO,
        condition=_travel_home,
        reset_condition=_travelling,
        message=_fixed("Returned to **Torn City**!", "Sell your items on the market."),
    ),
    AlertDefinition(
        key="TRAVEL_READY",
        emoji="🛫",
        title="Ready to Travel!",
        data_group=DataGroup.TRAVEL,
        cadence=Cadence.FAST,
        cooldown_seconds=300,
        severity=Severity.INFO,
        condition=_travel_home,
        reset_condition=_travelling,
        message=_fixed("Travel cooldown is over!", "Ready for your next trip."),
    ),
    AlertDefinition(
        key="EDUCATION_COMPLETED",
        emoji="🎓",
        title="Education Completed!",
        data_group=DataGroup.EDUCATION,
        cadence=Cadence.MEDIUM,
        cooldown_seconds=300,
        severity=Severity.ACTION,
        condition=_education_completed,
        reset_condition=_education_started,
        message=_fixed("Education course completed!", "Start a new course to continue learning."),
    ),
    AlertDefinition(
        key="JOB_POINTS_AVAILABLE",
        emoji="💼",
        title="Job Points Available!",
        data_group=DataGroup.JOB,
        cadence=Cadence.SLOW,
        cooldown_seconds=600,
        severity=Severity.ACTION,
        condition=_job_points_appeared,
        reset_condition=_job_points_spent,
        message=_job_points_message,
    ),
    AlertDefinition(
        key="OUT_OF_HOSPITAL",
        emoji="🏥",
        title="Out of Hospital!",
        data_group=DataGroup.PROFILE,
        cadence=Cadence.FAST,
        cooldown_seconds=60,
        severity=Severity.INFO,
        condition=_left_hospital,
        reset_condition=_in_hospital,
        message=_fixed("You are out of hospital!", "Back to normal activities."),
    ),
    # Delta alerts re-arm immediately: they fire on every qualifying cycle.
    AlertDefinition(
        key="CASH_DROP",
        emoji="📉",
        title="Cash Drop Alert!",
        data_group=DataGroup.FINANCIAL,
        cadence=Cadence.MEDIUM,
        cooldown_seconds=600,
        severity=Severity.WARNING,
        condition=_cash_dropped,
        reset_condition=_always,
        message=_cash_drop_message,
    ),
    AlertDefinition(
        key="UNPAID_FEES_INCREASED",
        emoji="💸",
        title="Unpaid Fees Alert!",
        data_group=DataGroup.FINANCIAL,
        cadence=Cadence.MEDIUM,
        cooldown_seconds=600,
        severity=Severity.WARNING,
        condition=_fees_increased,
        reset_condition=_always,
        message=_fees_message,
    ),
    AlertDefinition(
        key="NEW_MESSAGE",
        emoji="📬",
        title="New Message!",
        data_group=DataGroup.MESSAGES,
        cadence=Cadence.FAST,
        cooldown_seconds=30,
        severity=Severity.INFO,
        condition=_has_new("messages"),
        reset_condition=_always,
        message=_new_message_lines,
    ),
    AlertDefinition(
        key="NEW_EVENT",
        emoji="📋",
        title="New Event!",
        data_group=DataGroup.EVENTS,
        cadence=Cadence.FAST,
        cooldown_seconds=30,
        severity=Severity.INFO,
        condition=_has_new("events"),
        reset_condition=_always,
        message=_new_event_lines,
    ),
]

ALERTS = {definition.key: definition for definition in _SIMPLE}
