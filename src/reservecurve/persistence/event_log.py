"""Append-only event log of every protocol state change.

Each successful operation appends one or more hashed records: the
operation itself, plus one record per fee slice it paid or redirected.
Records are immutable once written and can be persisted to JSONL and
reloaded with hash and duplicate checks, so a log file that was edited
after the fact is rejected on load.

Amounts in payloads are integers in base units, exactly as the engine
holds them.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of protocol events."""
    TOKEN_CREATED = "token_created"
    # Sale
    CONTRIBUTION_RECORDED = "contribution_recorded"
    MARKET_OPENED = "market_opened"
    REDEEMED = "redeemed"
    # Trading
    BUY = "buy"
    SELL = "sell"
    FEE_PAID = "fee_paid"
    FEE_REDIRECTED = "fee_redirected"
    # Credit and backing
    BORROW = "borrow"
    REPAY = "repay"
    HEAL = "heal"
    BURN = "burn"
    TRANSFER = "transfer"
    # Control
    OWNER_FEE_STATUS_SET = "owner_fee_status_set"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    TREASURY_SET = "treasury_set"


def _canonical(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> bytes:
    return json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")


def _digest(canonical: bytes) -> str:
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable protocol event.

    event_hash is SHA-256 over the canonical JSON of the other fields.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp: Optional[int] = None,
    ) -> EventRecord:
        """Create a record stamped with ``timestamp`` (epoch seconds, default now)."""
        if timestamp is None:
            ts = datetime.now(timezone.utc)
        else:
            ts = datetime.fromtimestamp(timestamp, timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        digest = _digest(_canonical(event_id, event_kind.value, ts_str, actor_id, payload))
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=digest,
        )

    def verify(self) -> bool:
        expected = _digest(
            _canonical(
                self.event_id,
                self.event_kind.value,
                self.timestamp_utc,
                self.actor_id,
                self.payload,
            )
        )
        return expected == self.event_hash

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Usage:
        log = EventLog(Path("events.jsonl"))
        log.append(EventRecord.create("evt-1", EventKind.BUY, "alice", {...}))
        buys = log.events(EventKind.BUY)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_token(
        self,
        token_id: str,
        kind: Optional[EventKind] = None,
    ) -> list[EventRecord]:
        return [e for e in self.events(kind) if e.payload.get("token_id") == token_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        """Load events from JSONL, rejecting tampered lines and replayed IDs."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                if not event.verify():
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {event.event_hash} does not match its content"
                    )
                self._events.append(event)
                self._event_ids.add(event_id)
