"""
Pending edits for NUS3BANK files.

Editor actions are queued as remove / replace / add operations and applied
in one go when the file is saved. ``PendingChanges`` is the per-file
transaction; ``PendingRegistry`` indexes transactions by file path for
callers that only know the path.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .nus3bank_errors import InvalidFormat, Nus3bankError
from .nus3bank_parser import parse_bytes
from .nus3bank_structures import Nus3bankFile, TrackId, parse_track_id, validate_new_track
from .nus3bank_writer import write_file

logger = logging.getLogger(__name__)

SYNTHETIC_ID_BASE = 0x8000_0000


class OperationKind(IntEnum):
    # Values double as apply priority.
    REMOVE = 0
    REPLACE = 1
    ADD = 2


@dataclass(frozen=True)
class PendingOperation:
    kind: OperationKind
    track_id: int
    payload: bytes = b""
    name: str = ""

    @property
    def sort_key(self) -> Tuple[int, str, int]:
        if self.kind is OperationKind.ADD:
            return (int(self.kind), self.name, self.track_id)
        return (int(self.kind), "", self.track_id)

    def describe(self) -> str:
        if self.kind is OperationKind.ADD:
            return f"add {self.name!r}"
        return f"{self.kind.name.lower()} 0x{self.track_id:x}"


@dataclass
class ApplyReport:
    removed: List[int] = field(default_factory=list)
    replaced: List[int] = field(default_factory=list)
    added: Dict[int, int] = field(default_factory=dict)
    rejected: List[Tuple[PendingOperation, Nus3bankError]] = field(default_factory=list)

    @property
    def applied_count(self) -> int:
        return len(self.removed) + len(self.replaced) + len(self.added)


def normalize_path(path: Union[str, os.PathLike]) -> str:
    s = os.fspath(path).strip().replace("\\", "/").lower()
    while "//" in s:
        s = s.replace("//", "/")
    return s.rstrip("/")


class PendingChanges:
    """Last-write-wins operation log for one bank file."""

    def __init__(self, file_path: Union[str, os.PathLike] = ""):
        self.file_path = os.fspath(file_path)
        self._operations: Dict[int, PendingOperation] = {}
        self._next_synthetic = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._operations)

    @property
    def is_empty(self) -> bool:
        return len(self) == 0

    def register_remove(self, track_id: TrackId):
        op = PendingOperation(OperationKind.REMOVE, parse_track_id(track_id))
        self._put(op)

    def register_replace(self, track_id: TrackId, payload: bytes):
        if not payload:
            raise InvalidFormat("Audio data cannot be empty")
        op = PendingOperation(OperationKind.REPLACE, parse_track_id(track_id), payload=bytes(payload))
        self._put(op)

    def register_add(self, name: str, payload: bytes) -> int:
        validate_new_track(name, payload)
        with self._lock:
            synthetic_id = SYNTHETIC_ID_BASE + self._next_synthetic
            self._next_synthetic += 1
            self._operations[synthetic_id] = PendingOperation(
                OperationKind.ADD, synthetic_id, payload=bytes(payload), name=name
            )
        logger.debug("Queued add %r as 0x%x", name, synthetic_id)
        return synthetic_id

    def _put(self, op: PendingOperation):
        with self._lock:
            self._operations[op.track_id] = op
        logger.debug("Queued %s", op.describe())

    def operations(self) -> List[PendingOperation]:
        """Snapshot of queued operations in apply order."""
        with self._lock:
            ops = list(self._operations.values())
        return sorted(ops, key=lambda op: op.sort_key)

    def discard(self, consumed: Iterable[PendingOperation]):
        """Drop operations that were applied, keeping anything queued since."""
        with self._lock:
            for op in consumed:
                key = op.track_id
                if self._operations.get(key) is op:
                    del self._operations[key]

    def clear(self):
        with self._lock:
            self._operations.clear()


def apply(bank: Nus3bankFile, changes: Union[PendingChanges, Iterable[PendingOperation]]) -> ApplyReport:
    ops = changes.operations() if isinstance(changes, PendingChanges) else sorted(changes, key=lambda op: op.sort_key)
    report = ApplyReport()
    for op in ops:
        try:
            if op.kind is OperationKind.REMOVE:
                bank.remove_track(op.track_id)
                report.removed.append(op.track_id)
            elif op.kind is OperationKind.REPLACE:
                bank.replace_track_data(op.track_id, op.payload)
                report.replaced.append(op.track_id)
            else:
                track = bank.add_track(op.name, op.payload)
                report.added[op.track_id] = track.track_id
        except Nus3bankError as exc:
            logger.warning("Rejected pending %s: %s", op.describe(), exc)
            report.rejected.append((op, exc))
    logger.info(
        "Applied %d pending operations (%d rejected)", report.applied_count, len(report.rejected)
    )
    return report


def apply_and_save(
    source_path: Union[str, os.PathLike],
    changes: PendingChanges,
    output_path: Optional[Union[str, os.PathLike]] = None,
) -> ApplyReport:
    """Parse, apply, write, then drop the consumed operations.

    Any exception leaves ``changes`` as it was so the caller can retry.
    """
    ops = changes.operations()
    data = Path(source_path).read_bytes()
    bank = parse_bytes(data, file_path=os.fspath(source_path))
    report = apply(bank, ops)
    write_file(bank, output_path or source_path, data)
    changes.discard(ops)
    return report


class PendingRegistry:
    """Process-wide lookup of ``PendingChanges`` by normalized file path."""

    def __init__(self):
        self._sessions: Dict[str, PendingChanges] = {}
        self._lock = threading.Lock()

    def session(self, path: Union[str, os.PathLike]) -> PendingChanges:
        key = normalize_path(path)
        with self._lock:
            changes = self._sessions.get(key)
            if changes is None:
                changes = self._sessions[key] = PendingChanges(path)
            return changes

    def get(self, path: Union[str, os.PathLike]) -> Optional[PendingChanges]:
        with self._lock:
            return self._sessions.get(normalize_path(path))

    def register_remove(self, path, track_id: TrackId):
        self.session(path).register_remove(track_id)

    def register_replace(self, path, track_id: TrackId, payload: bytes):
        self.session(path).register_replace(track_id, payload)

    def register_add(self, path, name: str, payload: bytes) -> int:
        return self.session(path).register_add(name, payload)

    def pending_count(self, path=None) -> int:
        with self._lock:
            sessions = list(self._sessions.values()) if path is None else [
                s for k, s in self._sessions.items() if k == normalize_path(path)
            ]
        return sum(len(s) for s in sessions)

    def has_pending(self, path=None) -> bool:
        return self.pending_count(path) > 0

    def clear(self, path=None):
        with self._lock:
            if path is None:
                self._sessions.clear()
            else:
                self._sessions.pop(normalize_path(path), None)

    def apply_and_save(self, path, output_path=None) -> ApplyReport:
        changes = self.session(path)
        report = apply_and_save(path, changes, output_path)
        with self._lock:
            key = normalize_path(path)
            if self._sessions.get(key) is changes and len(changes) == 0:
                del self._sessions[key]
        return report


pending_registry = PendingRegistry()
