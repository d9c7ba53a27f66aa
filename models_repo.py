from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime, timezone
import hashlib
import json

GENESIS_HASH = "0" * 64

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are taken as UTC so they compare with the ledger clock."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

# Enumerations and Models
class DonationState(str, Enum):
    AVAILABLE = "available"
    CLAIMED = "claimed"
    PICKED_UP = "picked_up"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class NotificationKind(str, Enum):
    DONOR_REGISTERED = "DonorRegistered"
    DONOR_UNREGISTERED = "DonorUnregistered"
    RECIPIENT_REGISTERED = "RecipientRegistered"
    RECIPIENT_UNREGISTERED = "RecipientUnregistered"
    DONATION_CREATED = "DonationCreated"
    DONATION_CLAIMED = "DonationClaimed"
    DONATION_PICKED_UP = "DonationPickedUp"
    DONATION_COMPLETED = "DonationCompleted"
    DONATION_CANCELLED = "DonationCancelled"
    ADMINISTRATION_TRANSFERRED = "AdministrationTransferred"

class Donor(BaseModel):
    identity: str
    name: str
    contact: str = ""
    registered_at: datetime

class Recipient(BaseModel):
    identity: str
    name: str
    contact: str = ""
    registered_at: datetime

class Donation(BaseModel):
    id: int = Field(gt=0)
    donor: str
    recipient: Optional[str] = None
    title: str
    description: str = ""
    quantity: int = Field(ge=0)
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    location_note: str = ""
    status: DonationState = DonationState.AVAILABLE
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("available_from", "available_until")
    @classmethod
    def window_in_utc(cls, v: Optional[datetime]):
        return as_utc(v)

class Notification(BaseModel):
    seq: int = Field(gt=0)
    kind: NotificationKind
    actor: str
    donation_id: Optional[int] = None
    # identity the event is about: the registered profile, the claimant or the new administrator
    subject: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    forced: bool = False
    timestamp: datetime
    prev_hash: str = GENESIS_HASH
    hash: str = ""

    def compute_hash(self) -> str:
        body = self.model_dump(mode="json", exclude={"hash"})
        encoded = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
        return hashlib.sha256(encoded).hexdigest()

    def sealed(self) -> "Notification":
        return self.model_copy(update={"hash": self.compute_hash()})


# In-Memory Repository
class InMemoryRepo:
    """Registries, the primary donation map and its append-only indexes.

    The only writer is ``apply``, which folds one notification into the state.
    Callers validate before building the notification, so ``apply`` never
    rejects anything.
    """

    def __init__(self, administrator: str):
        self.administrator = administrator
        self.donors: Dict[str, Donor] = {}
        self.recipients: Dict[str, Recipient] = {}
        self.donations: Dict[int, Donation] = {}
        self.recent_ids: List[int] = []
        self.by_donor: Dict[str, List[int]] = {}
        self.by_recipient: Dict[str, List[int]] = {}
        self.notifications: List[Notification] = []
        self.next_id = 1

    @property
    def last_hash(self) -> str:
        if not self.notifications:
            return GENESIS_HASH
        return self.notifications[-1].hash

    @property
    def next_seq(self) -> int:
        return len(self.notifications) + 1

    # Donors / Recipients
    def get_donor(self, identity: str) -> Optional[Donor]:
        return self.donors.get(identity)

    def get_recipient(self, identity: str) -> Optional[Recipient]:
        return self.recipients.get(identity)

    # Donations
    def get_donation(self, donation_id: int) -> Optional[Donation]:
        return self.donations.get(donation_id)

    def donations_for(self, ids: List[int]) -> List[Donation]:
        return [self.donations[i].model_copy() for i in ids]

    # Notifications
    def apply(self, note: Notification) -> Notification:
        kind = note.kind
        if kind == NotificationKind.DONOR_REGISTERED:
            self.donors[note.subject] = Donor(identity=note.subject, registered_at=note.timestamp, **note.payload)
        elif kind == NotificationKind.DONOR_UNREGISTERED:
            del self.donors[note.subject]
        elif kind == NotificationKind.RECIPIENT_REGISTERED:
            self.recipients[note.subject] = Recipient(identity=note.subject, registered_at=note.timestamp, **note.payload)
        elif kind == NotificationKind.RECIPIENT_UNREGISTERED:
            del self.recipients[note.subject]
        elif kind == NotificationKind.DONATION_CREATED:
            d = Donation(
                id=note.donation_id,
                donor=note.actor,
                created_at=note.timestamp,
                updated_at=note.timestamp,
                **note.payload
            )
            self.donations[d.id] = d
            self.recent_ids.append(d.id)
            self.by_donor.setdefault(d.donor, []).append(d.id)
            self.next_id = d.id + 1
        elif kind == NotificationKind.DONATION_CLAIMED:
            d = self.donations[note.donation_id]
            d.recipient = note.subject
            d.status = DonationState.CLAIMED
            d.updated_at = note.timestamp
            self.by_recipient.setdefault(note.subject, []).append(d.id)
        elif kind == NotificationKind.DONATION_PICKED_UP:
            d = self.donations[note.donation_id]
            d.status = DonationState.PICKED_UP
            d.updated_at = note.timestamp
        elif kind == NotificationKind.DONATION_COMPLETED:
            d = self.donations[note.donation_id]
            d.status = DonationState.COMPLETED
            d.updated_at = note.timestamp
        elif kind == NotificationKind.DONATION_CANCELLED:
            d = self.donations[note.donation_id]
            d.status = DonationState.CANCELLED
            d.cancel_reason = note.payload.get("reason", "")
            d.updated_at = note.timestamp
        elif kind == NotificationKind.ADMINISTRATION_TRANSFERRED:
            self.administrator = note.subject
        self.notifications.append(note)
        return note
