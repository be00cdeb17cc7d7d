"""
Local note store.

Tracks every note the wallet owns, keyed by commitment, through the spend
lifecycle:

    UNSPENT -> RESERVED -> PENDING_SPENT -> SPENT
                  |              |
                  +--> UNSPENT <-+          (abort / failed submission)

    PENDING -> UNSPENT                      (own output seen on chain)

Reservation happens at input selection time so two concurrent builds can
never select the same note. The store is the only mutable state shared
between builds and is guarded by a re-entrant lock.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..errors import NoteStateError
from .note import Note

logger = logging.getLogger(__name__)


class NoteState(Enum):
    """Lifecycle state of an owned note."""

    UNSPENT = "unspent"
    RESERVED = "reserved"
    PENDING_SPENT = "pending_spent"
    SPENT = "spent"
    PENDING = "pending"


_TRANSITIONS = {
    NoteState.UNSPENT: {NoteState.RESERVED, NoteState.SPENT},
    NoteState.RESERVED: {NoteState.UNSPENT, NoteState.PENDING_SPENT, NoteState.SPENT},
    NoteState.PENDING_SPENT: {NoteState.SPENT, NoteState.UNSPENT},
    NoteState.PENDING: {NoteState.UNSPENT},
    NoteState.SPENT: set(),
}


@dataclass
class NoteRecord:
    """A note together with its lifecycle state."""

    note: Note
    state: NoteState = NoteState.UNSPENT
    build_id: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    @property
    def commitment(self) -> int:
        return self.note.commitment()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note": self.note.to_dict(),
            "state": self.state.value,
            "build_id": self.build_id,
            "updated_at": self.updated_at,
        }


class NoteStore:
    """Thread-safe registry of owned notes."""

    def __init__(self):
        self._records: Dict[int, NoteRecord] = {}
        self._lock = threading.RLock()

    def _transition(
        self, record: NoteRecord, target: NoteState, build_id: Optional[str] = None
    ) -> None:
        if target not in _TRANSITIONS[record.state]:
            raise NoteStateError(
                f"Illegal note transition {record.state.value} -> {target.value}",
                commitment=record.commitment,
                current_state=record.state.value,
            )
        record.state = target
        record.build_id = build_id
        record.updated_at = time.time()

    def get(self, commitment: int) -> Optional[NoteRecord]:
        with self._lock:
            return self._records.get(commitment)

    def state_of(self, commitment: int) -> Optional[NoteState]:
        with self._lock:
            record = self._records.get(commitment)
            return record.state if record else None

    def records(self, state: Optional[NoteState] = None) -> List[NoteRecord]:
        with self._lock:
            return [
                r for r in self._records.values() if state is None or r.state == state
            ]

    def unspent(self) -> List[Note]:
        """Notes available for selection."""
        return [r.note for r in self.records(NoteState.UNSPENT)]

    def balance(self, include_pending: bool = False) -> int:
        """Sum of unspent amounts, optionally counting unconfirmed outputs."""
        states = {NoteState.UNSPENT}
        if include_pending:
            states.add(NoteState.PENDING)
        with self._lock:
            return sum(r.note.amount for r in self._records.values() if r.state in states)

    def add_unspent(self, note: Note) -> NoteRecord:
        """
        Record a note found on chain.

        A pending output of our own is promoted to unspent with its leaf
        index; a note already tracked in any other state is left untouched.
        """
        if note.index is None:
            raise ValueError("Only notes with a tree position can be recorded as unspent")

        with self._lock:
            commitment = note.commitment()
            record = self._records.get(commitment)
            if record is None:
                record = NoteRecord(note=note)
                self._records[commitment] = record
                logger.debug(f"Recorded unspent note at index {note.index}")
            elif record.state == NoteState.PENDING:
                record.note = note
                self._transition(record, NoteState.UNSPENT)
                logger.debug(f"Pending output confirmed at index {note.index}")
            return record

    def add_pending_output(self, note: Note, build_id: str) -> NoteRecord:
        """Track an output of an in-flight transaction."""
        with self._lock:
            commitment = note.commitment()
            if commitment in self._records:
                raise NoteStateError(
                    "Output commitment is already tracked",
                    commitment=commitment,
                    current_state=self._records[commitment].state.value,
                )
            record = NoteRecord(note=note, state=NoteState.PENDING, build_id=build_id)
            self._records[commitment] = record
            return record

    def reserve(self, commitments: Iterable[int], build_id: str) -> List[NoteRecord]:
        """Reserve every commitment for ``build_id``, or none of them."""
        commitments = list(commitments)
        with self._lock:
            records = []
            for commitment in commitments:
                record = self._records.get(commitment)
                if record is None:
                    raise NoteStateError("Unknown note", commitment=commitment)
                if record.state != NoteState.UNSPENT:
                    raise NoteStateError(
                        f"Note is {record.state.value}, not unspent",
                        commitment=commitment,
                        current_state=record.state.value,
                    )
                records.append(record)

            if len(set(commitments)) != len(commitments):
                raise NoteStateError("Duplicate commitment in reservation")

            for record in records:
                self._transition(record, NoteState.RESERVED, build_id)
            logger.debug(f"Reserved {len(records)} notes for build {build_id}")
            return records

    def _for_build(self, build_id: str, state: NoteState) -> List[NoteRecord]:
        return [
            r
            for r in self._records.values()
            if r.build_id == build_id and r.state == state
        ]

    def release(self, build_id: str) -> int:
        """Return notes reserved by ``build_id`` to unspent."""
        with self._lock:
            records = self._for_build(build_id, NoteState.RESERVED)
            for record in records:
                self._transition(record, NoteState.UNSPENT)
            if records:
                logger.debug(f"Released {len(records)} notes from build {build_id}")
            return len(records)

    def mark_pending_spent(self, build_id: str) -> int:
        """Reserved inputs of a submitted transaction become pending spent."""
        with self._lock:
            records = self._for_build(build_id, NoteState.RESERVED)
            if not records:
                raise NoteStateError(f"Build {build_id} holds no reserved notes")
            for record in records:
                self._transition(record, NoteState.PENDING_SPENT, build_id)
            return len(records)

    def confirm(self, build_id: str) -> int:
        """The transaction landed: its inputs are spent."""
        with self._lock:
            records = self._for_build(build_id, NoteState.PENDING_SPENT)
            for record in records:
                self._transition(record, NoteState.SPENT, build_id)
            return len(records)

    def fail(self, build_id: str) -> int:
        """The transaction was rejected: inputs return to unspent, outputs are dropped."""
        with self._lock:
            records = self._for_build(build_id, NoteState.PENDING_SPENT)
            for record in records:
                self._transition(record, NoteState.UNSPENT)

            dropped = [c for c, r in self._records.items() if r.build_id == build_id and r.state == NoteState.PENDING]
            for commitment in dropped:
                del self._records[commitment]

            logger.info(
                f"Build {build_id} failed: {len(records)} inputs restored, "
                f"{len(dropped)} outputs dropped"
            )
            return len(records)

    def mark_spent(self, commitment: int) -> None:
        """Record that the ledger has seen this note's nullifier."""
        with self._lock:
            record = self._records.get(commitment)
            if record is None:
                raise NoteStateError("Unknown note", commitment=commitment)
            if record.state != NoteState.SPENT:
                self._transition(record, NoteState.SPENT, record.build_id)

    def __contains__(self, commitment: int) -> bool:
        with self._lock:
            return commitment in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
