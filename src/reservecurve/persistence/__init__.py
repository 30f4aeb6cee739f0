"""Event persistence."""

from reservecurve.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
]
