"""Player progress persistence.

Serializes PlayerProgressState with versioning support. Sets are written as
sorted lists and active operations as an ordered list, so activation order
survives a save/load round trip.
"""
from __future__ import annotations
import json
import logging
import re
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ledger import CreditsLedger
from .model import LifecycleEvent
from .state import ActiveOperation, JournalRecord, PlayerProgressState

logger = logging.getLogger(__name__)

# Save format version - increment when making breaking changes
SAVE_VERSION = 1

_SAFE_PLAYER_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class SaveError(Exception):
    """Exception raised for save/load operations."""
    pass


def serialize_progress_state(state: PlayerProgressState) -> Dict[str, Any]:
    """Convert PlayerProgressState to a JSON-serializable dictionary."""
    return {
        "player_id": state.player_id,
        "flags": dict(state.flags),
        "ledger": state.ledger.to_dict(),
        "completed_operation_ids": sorted(state.completed_operation_ids),
        "active_operations": [
            {
                "operation_id": op_id,
                "current_step_index": entry.current_step_index,
                "activated_at": entry.activated_at,
                "sequence": entry.sequence,
                "awaiting_advance": entry.awaiting_advance,
            }
            for op_id, entry in state.active_in_order()
        ],
        "activation_counter": state.activation_counter,
        "connected_host_id": state.connected_host_id,
        "connected_ip": state.connected_ip,
        "deleted_paths": {host: sorted(paths) for host, paths in state.deleted_paths.items()},
        "journal": [
            {
                "operation_id": r.operation_id,
                "event": r.event.value,
                "timestamp": r.timestamp,
                "detail": r.detail,
            }
            for r in state.journal
        ],
        "_save_metadata": {
            "version": SAVE_VERSION,
            "timestamp": time.time(),
            "date_saved": datetime.now().isoformat(),
        },
    }


def deserialize_progress_state(data: Dict[str, Any]) -> PlayerProgressState:
    """Convert a dictionary back to PlayerProgressState.

    Raises:
        SaveError: If the save version is newer than supported or the data
            violates state invariants
    """
    metadata = data.get("_save_metadata", {})
    save_version = metadata.get("version", 0)
    if save_version > SAVE_VERSION:
        raise SaveError(f"Save file version {save_version} is newer than supported version {SAVE_VERSION}")

    try:
        ledger = CreditsLedger.from_dict(data.get("ledger", {}))
        active = {}
        for item in data.get("active_operations", []):
            active[item["operation_id"]] = ActiveOperation(
                current_step_index=int(item.get("current_step_index", 0)),
                activated_at=float(item.get("activated_at", 0.0)),
                sequence=int(item.get("sequence", 0)),
                awaiting_advance=bool(item.get("awaiting_advance", False)),
            )
        journal = [
            JournalRecord(
                operation_id=r["operation_id"],
                event=LifecycleEvent(r["event"]),
                timestamp=float(r.get("timestamp", 0.0)),
                detail=r.get("detail"),
            )
            for r in data.get("journal", [])
        ]
        state = PlayerProgressState(
            player_id=data["player_id"],
            flags=dict(data.get("flags", {})),
            ledger=ledger,
            completed_operation_ids=set(data.get("completed_operation_ids", [])),
            active_operations=active,
            activation_counter=int(data.get("activation_counter", len(active))),
            connected_host_id=data.get("connected_host_id"),
            connected_ip=data.get("connected_ip"),
            deleted_paths={h: set(p) for h, p in data.get("deleted_paths", {}).items()},
            journal=journal,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SaveError(f"Corrupted player record: {e}")

    overlap = state.completed_operation_ids & set(state.active_operations)
    if overlap:
        raise SaveError(f"Operations both active and completed: {sorted(overlap)}")
    return state


class PlayerStore:
    """Storage backend interface for player progress."""

    def load(self, player_id: str) -> Optional[PlayerProgressState]:
        raise NotImplementedError

    def save(self, state: PlayerProgressState) -> None:
        raise NotImplementedError

    def exists(self, player_id: str) -> bool:
        return self.load(player_id) is not None


class InMemoryPlayerStore(PlayerStore):
    """Keeps serialized records in memory; every load returns a fresh copy."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._guard = threading.Lock()

    def load(self, player_id: str) -> Optional[PlayerProgressState]:
        with self._guard:
            record = self._records.get(player_id)
        if record is None:
            return None
        return deserialize_progress_state(json.loads(json.dumps(record)))

    def save(self, state: PlayerProgressState) -> None:
        record = serialize_progress_state(state)
        with self._guard:
            self._records[state.player_id] = record

    def player_ids(self) -> List[str]:
        with self._guard:
            return sorted(self._records)


class JsonPlayerStore(PlayerStore):
    """One ``<player_id>.json`` file per player under a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path_for(self, player_id: str) -> Path:
        if not _SAFE_PLAYER_ID.match(player_id or ""):
            raise SaveError(f"Unsafe player id: {player_id!r}")
        return self.directory / f"{player_id}.json"

    def load(self, player_id: str) -> Optional[PlayerProgressState]:
        """Load a player's progress.

        Returns:
            The stored state, or None for an unknown player

        Raises:
            SaveError: If the file cannot be read or parsed
        """
        path = self._path_for(player_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Unreadable save file %s: %s", path, e)
            raise SaveError(f"Failed to load player {player_id}: {e}")
        return deserialize_progress_state(data)

    def save(self, state: PlayerProgressState) -> None:
        """Write a player's progress atomically (temp file + replace).

        Raises:
            SaveError: If the file cannot be written
        """
        path = self._path_for(state.player_id)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(serialize_progress_state(state), f, indent=2, ensure_ascii=False)
            tmp_path.replace(path)
        except OSError as e:
            raise SaveError(f"Failed to save player {state.player_id}: {e}")

    def player_ids(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))
