"""Alert subsystem: catalog, subject state, engine and poll scheduler."""
from alerts.catalog import CATALOG, all_alert_keys, definitions_for_group, get_definition, groups_for_cadence
from alerts.engine import AlertEngine
from alerts.rate_limit import RateLimiter
from alerts.registry import AlertDefinition, Cadence, DataGroup, Severity
from alerts.scheduler import BackoffTable, PollScheduler
from alerts.state import SubjectStateStore
