import logging
import threading
from datetime import datetime
from typing import Optional, List, Dict, Callable, Iterable

from models_repo import (
    InMemoryRepo, Donor, Recipient, Donation, DonationState, Notification,
    NotificationKind, utc_now, as_utc,
)
from errors import (
    NotRegisteredDonor, NotRegisteredRecipient, NotRegistered,
    InvalidAvailabilityWindow, DonationNotFound, NotAvailable, NotYetAvailable,
    OfferExpired, InvalidTransition, Unauthorized, InvalidIdentity, InvalidQuantity,
)
import audit

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Observer = Callable[[Notification], None]

# Machine Rules: allowed predecessor states per target state
ALLOWED_PREDECESSORS = {
    DonationState.CLAIMED: {DonationState.AVAILABLE},
    DonationState.PICKED_UP: {DonationState.CLAIMED},
    DonationState.COMPLETED: {DonationState.CLAIMED, DonationState.PICKED_UP},
    DonationState.CANCELLED: {DonationState.AVAILABLE, DonationState.CLAIMED},
    DonationState.AVAILABLE: set(),
}

TERMINAL_STATES = {DonationState.COMPLETED, DonationState.CANCELLED}

def can_transition(current: DonationState, target: DonationState) -> bool:
    return current in ALLOWED_PREDECESSORS.get(target, set())


class DonationLedger:
    """Donation lifecycle, registries and indexes behind one lock.

    Every mutating operation takes the caller identity explicitly, checks all
    of its preconditions, and only then commits exactly one notification.
    Observers see notifications in commit order.
    """

    def __init__(self, administrator: str, clock: Clock = utc_now):
        if not administrator:
            raise InvalidIdentity("administrator identity must not be empty")
        self.repo = InMemoryRepo(administrator)
        self.clock = clock
        self._lock = threading.RLock()
        self._observers: List[Observer] = []

    # Observers
    def subscribe(self, observer: Observer):
        with self._lock:
            self._observers.append(observer)

    def _emit(self, kind: NotificationKind, actor: str, donation_id: Optional[int] = None,
              subject: Optional[str] = None, payload: Optional[Dict] = None, forced: bool = False,
              timestamp: Optional[datetime] = None) -> Notification:
        note = Notification(
            seq=self.repo.next_seq,
            kind=kind,
            actor=actor,
            donation_id=donation_id,
            subject=subject,
            payload=payload or {},
            forced=forced,
            timestamp=timestamp or self.clock(),
            prev_hash=self.repo.last_hash,
        ).sealed()
        self.repo.apply(note)
        for observer in self._observers:
            try:
                observer(note)
            except Exception:
                # already committed; keep delivering to the remaining observers
                logger.exception("Observer %r failed on notification %d", observer, note.seq)
        return note

    def replay(self, notes: Iterable[Notification]) -> int:
        """Fold an exported notification log into this (empty) ledger."""
        notes = list(notes)
        with self._lock:
            audit.verify_chain(notes, start_seq=self.repo.next_seq, start_hash=self.repo.last_hash)
            for note in notes:
                self.repo.apply(note)
        logger.info("Replayed %d notifications", len(notes))
        return len(notes)

    # Authorization predicates
    @property
    def administrator(self) -> str:
        return self.repo.administrator

    def is_admin(self, identity: str) -> bool:
        return identity == self.repo.administrator

    def _require_admin(self, caller: str, donation_id: Optional[int] = None):
        if not self.is_admin(caller):
            raise Unauthorized("administrative authority required", donation_id=donation_id, identity=caller)

    def _require_party(self, caller: str, d: Donation, allow_recipient: bool = True):
        if caller == d.donor or self.is_admin(caller):
            return
        if allow_recipient and d.recipient is not None and caller == d.recipient:
            return
        raise Unauthorized(f"{caller} may not act on donation {d.id}", donation_id=d.id, identity=caller)

    def _require_donation(self, donation_id: int) -> Donation:
        d = self.repo.get_donation(donation_id) if donation_id else None
        if d is None:
            raise DonationNotFound(f"donation {donation_id} not found", donation_id=donation_id)
        return d

    def _require_transition(self, d: Donation, target: DonationState):
        if not can_transition(d.status, target):
            raise InvalidTransition(
                f"cannot move donation {d.id} from {d.status.value} to {target.value}",
                donation_id=d.id,
            )

    # Registry
    def register_donor(self, identity: str, name: str, contact: str = "") -> Donor:
        with self._lock:
            self._emit(NotificationKind.DONOR_REGISTERED, identity, subject=identity,
                       payload={"name": name, "contact": contact})
            return self.repo.get_donor(identity).model_copy()

    def unregister_donor(self, identity: str):
        with self._lock:
            if self.repo.get_donor(identity) is None:
                raise NotRegistered(f"{identity} is not a registered donor", identity=identity)
            self._emit(NotificationKind.DONOR_UNREGISTERED, identity, subject=identity)

    def register_recipient(self, identity: str, name: str, contact: str = "") -> Recipient:
        with self._lock:
            self._emit(NotificationKind.RECIPIENT_REGISTERED, identity, subject=identity,
                       payload={"name": name, "contact": contact})
            return self.repo.get_recipient(identity).model_copy()

    def unregister_recipient(self, identity: str):
        with self._lock:
            if self.repo.get_recipient(identity) is None:
                raise NotRegistered(f"{identity} is not a registered recipient", identity=identity)
            self._emit(NotificationKind.RECIPIENT_UNREGISTERED, identity, subject=identity)

    def is_registered_donor(self, identity: str) -> bool:
        return self.repo.get_donor(identity) is not None

    def is_registered_recipient(self, identity: str) -> bool:
        return self.repo.get_recipient(identity) is not None

    def donor_profile(self, identity: str) -> Donor:
        with self._lock:
            donor = self.repo.get_donor(identity)
            if donor is None:
                raise NotRegistered(f"{identity} is not a registered donor", identity=identity)
            return donor.model_copy()

    def recipient_profile(self, identity: str) -> Recipient:
        with self._lock:
            recipient = self.repo.get_recipient(identity)
            if recipient is None:
                raise NotRegistered(f"{identity} is not a registered recipient", identity=identity)
            return recipient.model_copy()

    # Lifecycle
    def create_donation(self, caller: str, title: str, description: str = "", quantity: int = 0,
                        available_from: Optional[datetime] = None, available_until: Optional[datetime] = None,
                        location_note: str = "") -> int:
        with self._lock:
            if not self.is_registered_donor(caller):
                raise NotRegisteredDonor(f"{caller} is not a registered donor", identity=caller)
            if quantity < 0:
                raise InvalidQuantity("quantity must not be negative", identity=caller)
            available_from, available_until = as_utc(available_from), as_utc(available_until)
            if available_from is not None and available_until is not None and available_until <= available_from:
                raise InvalidAvailabilityWindow("availability window must end after it starts", identity=caller)
            donation_id = self.repo.next_id
            payload = {
                "title": title,
                "description": description,
                "quantity": quantity,
                "available_from": available_from.isoformat() if available_from else None,
                "available_until": available_until.isoformat() if available_until else None,
                "location_note": location_note,
            }
            self._emit(NotificationKind.DONATION_CREATED, caller, donation_id=donation_id, payload=payload)
            return donation_id

    def claim_donation(self, caller: str, donation_id: int) -> Donation:
        with self._lock:
            if not self.is_registered_recipient(caller):
                raise NotRegisteredRecipient(f"{caller} is not a registered recipient",
                                             donation_id=donation_id, identity=caller)
            d = self._require_donation(donation_id)
            if d.status != DonationState.AVAILABLE:
                raise NotAvailable(f"donation {d.id} is {d.status.value}", donation_id=d.id, identity=caller)
            now = self.clock()
            if d.available_from and now < d.available_from:
                raise NotYetAvailable(f"donation {d.id} is not available before {d.available_from.isoformat()}",
                                      donation_id=d.id, identity=caller)
            if d.available_until and now > d.available_until:
                raise OfferExpired(f"donation {d.id} expired at {d.available_until.isoformat()}",
                                   donation_id=d.id, identity=caller)
            self._emit(NotificationKind.DONATION_CLAIMED, caller, donation_id=d.id, subject=caller, timestamp=now)
            return d.model_copy()

    def mark_picked_up(self, caller: str, donation_id: int) -> Donation:
        with self._lock:
            d = self._require_donation(donation_id)
            self._require_transition(d, DonationState.PICKED_UP)
            self._require_party(caller, d)
            self._emit(NotificationKind.DONATION_PICKED_UP, caller, donation_id=d.id)
            return d.model_copy()

    def complete_donation(self, caller: str, donation_id: int) -> Donation:
        with self._lock:
            d = self._require_donation(donation_id)
            self._require_transition(d, DonationState.COMPLETED)
            self._require_party(caller, d)
            self._emit(NotificationKind.DONATION_COMPLETED, caller, donation_id=d.id)
            return d.model_copy()

    def cancel_donation(self, caller: str, donation_id: int, reason: str = "") -> Donation:
        with self._lock:
            d = self._require_donation(donation_id)
            self._require_party(caller, d, allow_recipient=False)
            self._require_transition(d, DonationState.CANCELLED)
            self._emit(NotificationKind.DONATION_CANCELLED, caller, donation_id=d.id, payload={"reason": reason})
            return d.model_copy()

    # Administrative override
    def admin_force_complete(self, caller: str, donation_id: int) -> Donation:
        with self._lock:
            d = self._require_donation(donation_id)
            self._require_admin(caller, donation_id)
            self._emit(NotificationKind.DONATION_COMPLETED, caller, donation_id=d.id, forced=True,
                       payload={"previous_status": d.status.value})
            logger.info("Donation %s force-completed by %s", d.id, caller)
            return d.model_copy()

    def admin_force_cancel(self, caller: str, donation_id: int, reason: str = "") -> Donation:
        with self._lock:
            d = self._require_donation(donation_id)
            self._require_admin(caller, donation_id)
            self._emit(NotificationKind.DONATION_CANCELLED, caller, donation_id=d.id, forced=True,
                       payload={"reason": reason, "previous_status": d.status.value})
            logger.info("Donation %s force-cancelled by %s", d.id, caller)
            return d.model_copy()

    def transfer_administration(self, caller: str, new_identity: str) -> str:
        with self._lock:
            self._require_admin(caller)
            if not new_identity:
                raise InvalidIdentity("new administrator identity must not be empty", identity=caller)
            self._emit(NotificationKind.ADMINISTRATION_TRANSFERRED, caller, subject=new_identity,
                       payload={"previous": caller})
            return new_identity

    # Index & Query
    def get_donation(self, donation_id: int) -> Donation:
        with self._lock:
            return self._require_donation(donation_id).model_copy()

    def latest_donations(self, limit: int = 0) -> List[Donation]:
        if limit < 0:
            raise ValueError("limit must not be negative")
        with self._lock:
            ids = self.repo.recent_ids if limit == 0 else self.repo.recent_ids[-limit:]
            return self.repo.donations_for(ids[::-1])

    def donations_for_donor(self, identity: str) -> List[Donation]:
        with self._lock:
            return self.repo.donations_for(self.repo.by_donor.get(identity, []))

    def donations_for_recipient(self, identity: str) -> List[Donation]:
        with self._lock:
            return self.repo.donations_for(self.repo.by_recipient.get(identity, []))

    def donation_count(self) -> int:
        with self._lock:
            return len(self.repo.recent_ids)

    def notifications(self, since: int = 0) -> List[Notification]:
        with self._lock:
            return list(self.repo.notifications[since:])
