"""Immutable, process-wide alert catalog built from the simple and compound registries."""
from types import MappingProxyType
from typing import Dict, List, Optional, Tuple

from alerts.compound import COMPOUND_ALERTS
from alerts.registry import ALERTS, CADENCE_GROUPS, AlertDefinition


def _build(*registries: Dict[str, AlertDefinition]) -> "MappingProxyType[str, AlertDefinition]":
    merged: Dict[str, AlertDefinition] = {}
    for registry in registries:
        for key, definition in registry.items():
            if key != definition.key:
                raise ValueError(f"Alert registered under '{key}' declares key '{definition.key}'")
            if key in merged:
                raise ValueError(f"Duplicate alert key: {key}")
            merged[key] = definition
    return MappingProxyType(merged)


CATALOG = _build(ALERTS, COMPOUND_ALERTS)

_BY_GROUP: Dict[str, Tuple[AlertDefinition, ...]] = {}
for _definition in CATALOG.values():
    _BY_GROUP[_definition.data_group] = _BY_GROUP.get(_definition.data_group, ()) + (_definition,)


def get_definition(key: str) -> Optional[AlertDefinition]:
    return CATALOG.get(key)


def definitions_for_group(data_group: str) -> Tuple[AlertDefinition, ...]:
    """Definitions depending on a data group, simple ones first, in registry order."""
    return _BY_GROUP.get(data_group, ())


def groups_for_cadence(cadence: str) -> Tuple[str, ...]:
    return CADENCE_GROUPS.get(cadence, ())


def all_alert_keys() -> List[str]:
    return list(CATALOG.keys())
