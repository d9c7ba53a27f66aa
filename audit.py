import asyncio
import json
import logging
import threading
from collections import deque
from typing import Iterable, List, Optional

from models_repo import Notification, GENESIS_HASH
from errors import ChainIntegrityError
import database

logger = logging.getLogger("audit")

def verify_chain(notes: Iterable[Notification], start_seq: int = 1, start_hash: str = GENESIS_HASH) -> bool:
    """Check that ``notes`` continue a log ending at ``start_seq - 1`` / ``start_hash``."""
    expected_seq, prev_hash = start_seq, start_hash
    for note in notes:
        if note.seq != expected_seq:
            raise ChainIntegrityError(f"expected seq {expected_seq}, found {note.seq}", donation_id=note.donation_id)
        if note.prev_hash != prev_hash:
            raise ChainIntegrityError(f"seq {note.seq} does not link to its predecessor", donation_id=note.donation_id)
        if note.hash != note.compute_hash():
            raise ChainIntegrityError(f"seq {note.seq} was altered", donation_id=note.donation_id)
        expected_seq, prev_hash = note.seq + 1, note.hash
    return True

def contiguous_prefix(notes: List[Notification]) -> List[Notification]:
    """Longest gap-free run starting at seq 1 (notes sorted by seq)."""
    prefix = []
    for note in notes:
        if note.seq != len(prefix) + 1:
            logger.warning("Notification log has a gap at seq %d; ignoring %d later entries",
                           len(prefix) + 1, len(notes) - len(prefix))
            break
        prefix.append(note)
    return prefix

def log_notification(note: Notification):
    logger.info(
        f"AUDIT: #{note.seq} {note.kind.value} by {note.actor}"
        f" donation={note.donation_id} subject={note.subject} forced={note.forced} payload={note.payload}"
    )


class Outbox:
    """Notifications committed in memory but not yet written to the database."""

    def __init__(self):
        self._pending = deque()
        self._lock = threading.Lock()
        self._flush_lock = asyncio.Lock()

    def __len__(self):
        return len(self._pending)

    def enqueue(self, note: Notification):
        with self._lock:
            self._pending.append(note)

    def drain(self) -> List[Notification]:
        with self._lock:
            notes = list(self._pending)
            self._pending.clear()
        return notes

    def peek(self) -> Optional[Notification]:
        with self._lock:
            return self._pending[0] if self._pending else None

    def _pop(self, note: Notification):
        with self._lock:
            if self._pending and self._pending[0] is note:
                self._pending.popleft()

    async def flush(self) -> int:
        """Write queued notifications oldest first; a failed write leaves it and the rest queued."""
        async with self._flush_lock:
            if not database.is_enabled():
                self.drain()
                return 0
            written = 0
            while True:
                note = self.peek()
                if note is None:
                    break
                try:
                    await database.insert_notification(note.model_dump(mode="json"))
                except Exception:
                    logger.exception("Persisting notification %d failed; %d stay queued", note.seq, len(self))
                    break
                self._pop(note)
                written += 1
            return written

outbox = Outbox()

# JSON Lines export / import
def export_jsonl(notes: Iterable[Notification], path: str) -> int:
    count = 0
    with open(path, "w", encoding="utf-8") as f:
        for note in notes:
            f.write(note.model_dump_json() + "\n")
            count += 1
    return count

def load_jsonl(path: str) -> List[Notification]:
    with open(path, "r", encoding="utf-8") as f:
        return [Notification(**json.loads(line)) for line in f if line.strip()]
