"""
Compare module for the Standings Watcher.

This module detects changes between two standings snapshots and safely
persists the latest snapshot between runs.

Diff cases, first match wins:
- both snapshots empty: no changes
- previous empty: a single InitialLoad
- new empty: a single DataLost (usually an upstream fetch/parse failure)
- equal fingerprints: no changes
- otherwise a field-level diff keyed by player name
"""

from typing import Dict, Iterable, List, Optional

from standings_watcher.models import (
    BoardChanged,
    ChangeEvent,
    DataLost,
    InitialLoad,
    NewPlayer,
    PlayerCountChanged,
    Record,
    ResultChanged,
    Snapshot,
)
from standings_watcher.utils import DEFAULT_STATE_PATH, get_logger, safe_read_json, safe_write_json


# Module logger
logger = get_logger("compare")

# Event kinds that warrant sending the full standings table
SIGNIFICANT_KINDS = {
    InitialLoad.kind,
    NewPlayer.kind,
    ResultChanged.kind,
    PlayerCountChanged.kind,
}


def _is_empty(snapshot: Optional[Snapshot]) -> bool:
    return snapshot is None or snapshot.is_empty


def index_by_name(records: Iterable[Record]) -> Dict[str, Record]:
    """
    Index records by player name.

    When a name appears more than once the last occurrence wins.
    """
    return {record.name: record for record in records}


def detect_player_changes(
    previous_records: Iterable[Record],
    new_records: Iterable[Record]
) -> List[ChangeEvent]:
    """
    Field-level comparison of two record lists keyed by name.

    Emits NewPlayer events in new-list order, then ResultChanged and
    BoardChanged events in previous-list order.

    Args:
        previous_records: Records of the previous snapshot.
        new_records: Records of the new snapshot.

    Returns:
        List of change events.
    """
    previous_records = list(previous_records)
    new_records = list(new_records)

    previous_by_name = index_by_name(previous_records)
    new_by_name = index_by_name(new_records)

    changes: List[ChangeEvent] = []

    emitted_new = set()
    for record in new_records:
        if record.name in previous_by_name or record.name in emitted_new:
            continue
        emitted_new.add(record.name)
        changes.append(NewPlayer(record=new_by_name[record.name]))

    compared = set()
    for record in previous_records:
        if record.name in compared:
            continue
        compared.add(record.name)

        new_record = new_by_name.get(record.name)
        if new_record is None:
            continue

        old_record = previous_by_name[record.name]

        if old_record.outcome != new_record.outcome:
            changes.append(ResultChanged(
                name=record.name,
                old=old_record.outcome,
                new=new_record.outcome
            ))

        if old_record.board != new_record.board:
            changes.append(BoardChanged(
                name=record.name,
                old=old_record.board,
                new=new_record.board
            ))

    return changes


def diff_snapshots(
    previous: Optional[Snapshot],
    new: Optional[Snapshot]
) -> List[ChangeEvent]:
    """
    Compare two snapshots and return the ordered list of change events.

    Args:
        previous: Snapshot from the previous cycle (None counts as empty).
        new: Freshly parsed snapshot (None counts as empty).

    Returns:
        List of change events; empty when nothing changed.
    """
    if _is_empty(previous) and _is_empty(new):
        return []

    if _is_empty(previous):
        logger.info(f"Initial load with {new.player_count} player(s)")
        return [InitialLoad(records=new.records)]

    if _is_empty(new):
        logger.warning(f"Standings data lost (previously {previous.player_count} player(s))")
        return [DataLost(records=previous.records)]

    if previous.fingerprint == new.fingerprint:
        logger.debug("Fingerprint unchanged, skipping detailed comparison")
        return []

    logger.info("Fingerprint changed, analyzing detailed differences")

    changes = detect_player_changes(previous.records, new.records)

    if previous.player_count != new.player_count:
        changes.append(PlayerCountChanged(
            old_count=previous.player_count,
            new_count=new.player_count
        ))

    logger.info(f"Detected {len(changes)} change(s)")
    return changes


def summarize_changes(changes: Iterable[ChangeEvent]) -> Dict[str, int]:
    """
    Count change events by kind.

    Args:
        changes: Change events.

    Returns:
        Dictionary mapping event kind to count, plus a "total" entry.
    """
    summary: Dict[str, int] = {"total": 0}
    for change in changes:
        summary[change.kind] = summary.get(change.kind, 0) + 1
        summary["total"] += 1
    return summary


def has_significant_changes(changes: Iterable[ChangeEvent]) -> bool:
    """True if any change should trigger sending the full table."""
    return any(change.kind in SIGNIFICANT_KINDS for change in changes)


# =============================================================================
# Persistence
# =============================================================================


def load_snapshot(filepath: str = DEFAULT_STATE_PATH) -> Snapshot:
    """
    Load the previously saved snapshot.

    Args:
        filepath: Path to the JSON state file.

    Returns:
        The saved Snapshot, or an empty Snapshot if the file is missing
        or cannot be parsed.
    """
    logger.debug(f"Loading previous snapshot from {filepath}")

    data = safe_read_json(filepath, default=None)

    if data is None:
        logger.info("No previous state found, starting fresh")
        return Snapshot.empty()

    if not isinstance(data, dict):
        logger.warning(f"Unexpected data format in {filepath}, starting fresh")
        return Snapshot.empty()

    try:
        snapshot = Snapshot.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        logger.warning(f"Corrupt state in {filepath}: {e}")
        return Snapshot.empty()

    stored_fingerprint = data.get("fingerprint")
    if stored_fingerprint and stored_fingerprint != snapshot.fingerprint:
        logger.warning(f"Stored fingerprint in {filepath} does not match its records")

    logger.info(f"Loaded previous state with {snapshot.player_count} player(s)")
    return snapshot


def save_snapshot(snapshot: Snapshot, filepath: str = DEFAULT_STATE_PATH) -> bool:
    """
    Save a snapshot using an atomic write.

    Args:
        snapshot: Snapshot to persist.
        filepath: Path to the JSON state file.

    Returns:
        True if save was successful, False otherwise.
    """
    logger.debug(f"Saving snapshot with {snapshot.player_count} player(s) to {filepath}")

    success = safe_write_json(filepath, snapshot.to_dict())

    if success:
        logger.debug(f"State saved to {filepath}")
    else:
        logger.error(f"Failed to save state to {filepath}")

    return success
