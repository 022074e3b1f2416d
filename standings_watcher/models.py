"""
Data model for the Standings Watcher.

Records, snapshots and change events are immutable once constructed, so a
snapshot can be handed to any reader while the poller builds the next one.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, Optional, Tuple


DEFAULT_SOURCE_NAME = "Chess Tournament"


@dataclass(frozen=True)
class Record:
    """
    One competitor's row in the standings table.

    Attributes:
        name: Player name, the identity key used for diffing. Required.
        board: Board number as displayed (may be non-numeric).
        affiliation: Club/city column.
        score: Points, parsed from "3,5" / "3.5" style text.
        outcome: Result of the current game with the leading marker stripped.
        round_index: Round number.
        starting_number: Starting rank (SNo) as displayed.
        rating: Rating, when the table has one.
        federation: Federation/country code.
    """
    name: str
    board: Optional[str] = None
    affiliation: Optional[str] = None
    score: Optional[float] = None
    outcome: Optional[str] = None
    round_index: Optional[int] = None
    starting_number: Optional[str] = None
    rating: Optional[int] = None
    federation: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError("Record requires a non-empty name")

    def fingerprint_fields(self) -> Tuple[Optional[str], str, Optional[str], Optional[float], Optional[str]]:
        """Fields that take part in the snapshot fingerprint."""
        return (self.board, self.name, self.affiliation, self.score, self.outcome)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_index": self.round_index,
            "board": self.board,
            "starting_number": self.starting_number,
            "name": self.name,
            "rating": self.rating,
            "federation": self.federation,
            "affiliation": self.affiliation,
            "score": self.score,
            "outcome": self.outcome,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """
        Build a Record from its dictionary form.

        Raises:
            ValueError: If the name is missing or a numeric field is malformed.
            TypeError: If data is not a dictionary.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a record object, got {type(data).__name__}")

        score = data.get("score")
        round_index = data.get("round_index")
        rating = data.get("rating")

        return cls(
            name=data.get("name"),
            board=data.get("board"),
            affiliation=data.get("affiliation"),
            score=float(score) if score is not None else None,
            outcome=data.get("outcome"),
            round_index=int(round_index) if round_index is not None else None,
            starting_number=data.get("starting_number"),
            rating=int(rating) if rating is not None else None,
            federation=data.get("federation"),
        )

    def __str__(self) -> str:
        return f"{self.board or ''}. {self.name} ({self.affiliation or ''}) - {self.score} pts"


def compute_fingerprint(records: Iterable[Record]) -> str:
    """
    Compute the content fingerprint of an ordered record sequence.

    The fingerprint is a SHA-256 digest of the canonical JSON encoding of
    each record's (board, name, affiliation, score, outcome) tuple, so it is
    stable across processes and can be persisted.

    Args:
        records: Records in table order.

    Returns:
        Hex digest string.
    """
    payload = [list(record.fingerprint_fields()) for record in records]
    encoded = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    """
    Captured state of the standings table at one point in time.

    Use Snapshot.build() so the fingerprint always matches the records.
    """
    source_name: str
    captured_at: datetime
    records: Tuple[Record, ...]
    fingerprint: str

    @classmethod
    def build(
        cls,
        source_name: Optional[str],
        records: Iterable[Record],
        captured_at: Optional[datetime] = None
    ) -> "Snapshot":
        records = tuple(records)
        return cls(
            source_name=source_name or DEFAULT_SOURCE_NAME,
            captured_at=captured_at or utc_now(),
            records=records,
            fingerprint=compute_fingerprint(records),
        )

    @classmethod
    def empty(cls, source_name: Optional[str] = None) -> "Snapshot":
        return cls.build(source_name, ())

    @property
    def is_empty(self) -> bool:
        return not self.records

    @property
    def player_count(self) -> int:
        return len(self.records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_name": self.source_name,
            "captured_at": self.captured_at.isoformat(),
            "records": [record.to_dict() for record in self.records],
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """
        Rebuild a Snapshot from its persisted form.

        The fingerprint is recomputed from the records rather than trusted
        from the document.

        Raises:
            ValueError, TypeError, KeyError: If the document is malformed.
        """
        raw_records = data.get("records") or []
        if not isinstance(raw_records, list):
            raise TypeError(f"Expected a list of records, got {type(raw_records).__name__}")

        records = [Record.from_dict(item) for item in raw_records]

        captured_at = data.get("captured_at")
        if captured_at:
            captured = datetime.fromisoformat(captured_at)
            if captured.tzinfo is None:
                captured = captured.replace(tzinfo=timezone.utc)
        else:
            captured = None

        return cls.build(data.get("source_name"), records, captured_at=captured)


# =============================================================================
# Change events
# =============================================================================


@dataclass(frozen=True)
class ChangeEvent:
    """Base class for a typed difference between two snapshots."""
    kind: ClassVar[str] = "change"

    def describe(self) -> str:
        return self.kind


@dataclass(frozen=True)
class InitialLoad(ChangeEvent):
    records: Tuple[Record, ...] = field(default_factory=tuple)
    kind: ClassVar[str] = "initial_load"

    def describe(self) -> str:
        return f"Tournament data loaded for the first time ({len(self.records)} players)"


@dataclass(frozen=True)
class DataLost(ChangeEvent):
    records: Tuple[Record, ...] = field(default_factory=tuple)
    kind: ClassVar[str] = "data_lost"

    def describe(self) -> str:
        return "Tournament data is no longer available"


@dataclass(frozen=True)
class NewPlayer(ChangeEvent):
    record: Optional[Record] = None
    kind: ClassVar[str] = "new_player"

    def describe(self) -> str:
        name = self.record.name if self.record else "unknown"
        return f"New player added: {name}"


@dataclass(frozen=True)
class ResultChanged(ChangeEvent):
    name: str = ""
    old: Optional[str] = None
    new: Optional[str] = None
    kind: ClassVar[str] = "result_changed"

    def describe(self) -> str:
        return f"{self.name}: result changed from '{self.old or ''}' to '{self.new or ''}'"


@dataclass(frozen=True)
class BoardChanged(ChangeEvent):
    name: str = ""
    old: Optional[str] = None
    new: Optional[str] = None
    kind: ClassVar[str] = "board_changed"

    def describe(self) -> str:
        return f"{self.name}: board number changed from {self.old} to {self.new}"


@dataclass(frozen=True)
class PlayerCountChanged(ChangeEvent):
    old_count: int = 0
    new_count: int = 0
    kind: ClassVar[str] = "player_count_changed"

    def describe(self) -> str:
        return f"Player count changed from {self.old_count} to {self.new_count}"
