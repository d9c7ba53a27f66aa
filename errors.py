from typing import Optional


class LedgerError(Exception):
    """Base for every rejected ledger operation.

    Raised before any mutation, so the ledger is unchanged when one of these
    propagates.
    """
    code = "LedgerError"
    status_code = 400

    def __init__(self, message: str, donation_id: Optional[int] = None, identity: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.donation_id = donation_id
        self.identity = identity

    def to_dict(self):
        return {
            "detail": self.message,
            "code": self.code,
            "donation_id": self.donation_id,
            "identity": self.identity,
        }


class NotRegisteredDonor(LedgerError):
    code = "NotRegisteredDonor"
    status_code = 403


class NotRegisteredRecipient(LedgerError):
    code = "NotRegisteredRecipient"
    status_code = 403


class NotRegistered(LedgerError):
    code = "NotRegistered"
    status_code = 404


class InvalidAvailabilityWindow(LedgerError):
    code = "InvalidAvailabilityWindow"
    status_code = 400


class DonationNotFound(LedgerError):
    code = "DonationNotFound"
    status_code = 404


class NotAvailable(LedgerError):
    code = "NotAvailable"
    status_code = 409


class NotYetAvailable(LedgerError):
    code = "NotYetAvailable"
    status_code = 409


class OfferExpired(LedgerError):
    code = "OfferExpired"
    status_code = 409


class InvalidTransition(LedgerError):
    code = "InvalidTransition"
    status_code = 409


class Unauthorized(LedgerError):
    code = "Unauthorized"
    status_code = 403


class InvalidIdentity(LedgerError):
    code = "InvalidIdentity"
    status_code = 400


class ChainIntegrityError(LedgerError):
    """The notification log does not link up (gap, reordering or edited entry)."""
    code = "ChainIntegrityError"
    status_code = 422


class InvalidQuantity(LedgerError):
    code = "InvalidQuantity"
    status_code = 400
