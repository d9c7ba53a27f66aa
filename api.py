import logging
import os
from datetime import datetime
from typing import List, Optional
from fastapi import FastAPI, Depends, HTTPException, status, Request, BackgroundTasks, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

import audit
import database
from errors import LedgerError, InvalidIdentity
from models_repo import Donation, Donor, Recipient, Notification
import role
from role import router as role_router, get_current_identity
from state_machine import DonationLedger

LOG_LEVEL = os.getenv("LOG_LEVEL", "info")
LEDGER_ADMIN = os.getenv("LEDGER_ADMIN", "admin")
LEDGER_ADMIN_PASSWORD = os.getenv("LEDGER_ADMIN_PASSWORD")
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

logging.basicConfig(level=LOG_LEVEL.upper())
logger = logging.getLogger(__name__)

def build_ledger(administrator: str = LEDGER_ADMIN, **kwargs) -> DonationLedger:
    ledger = DonationLedger(administrator, **kwargs)
    ledger.subscribe(audit.log_notification)
    ledger.subscribe(audit.outbox.enqueue)
    return ledger

ledger = build_ledger()

def get_ledger() -> DonationLedger:
    return ledger

app = FastAPI(
    title="FoodShare Ledger",
    description="Tamper-evident ledger of leftover-food donation offers, from posting to pickup and completion.",
    version="0.1.0"
)

app.include_router(role_router, prefix="")

class ProfileIn(BaseModel):
    name: str = Field(min_length=1)
    contact: str = ""

class DonationCreate(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    quantity: int = Field(ge=0)
    available_from: Optional[datetime] = None
    available_until: Optional[datetime] = None
    location_note: str = ""

class CancelRequest(BaseModel):
    reason: str = ""

class TransferRequest(BaseModel):
    new_identity: str

class Created(BaseModel):
    id: int

class Count(BaseModel):
    count: int

class Administrator(BaseModel):
    administrator: str

@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info(f"Rejected {request.method} {request.url.path}: {exc.code} ({exc.message})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

async def seed_admin_account(ledger: DonationLedger, password: Optional[str] = LEDGER_ADMIN_PASSWORD) -> bool:
    # the administrator account only ever comes from configuration, never from signup
    if not password:
        logger.warning("LEDGER_ADMIN_PASSWORD not set; administrator %s cannot log in", ledger.administrator)
        return False
    return await role.add_account(ledger.administrator, password)

@app.on_event("startup")
async def on_startup():
    if await database.init_db():
        role.accounts.load(await database.load_accounts())
        docs = await database.load_notifications()
        notes = audit.contiguous_prefix([Notification(**d) for d in docs])
        get_ledger().replay(notes)
    await seed_admin_account(get_ledger())

@app.on_event("shutdown")
async def on_shutdown():
    await audit.outbox.flush()
    await database.close_db()

# Accounts

@app.post("/accounts", response_model=role.Identity, status_code=status.HTTP_201_CREATED, tags=["accounts"])
async def create_account(account_in: role.AccountCreate, ledger: DonationLedger = Depends(get_ledger)):
    if account_in.username == ledger.administrator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Username is reserved")
    if not await role.add_account(account_in.username, account_in.password):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already taken")
    return {"identity": account_in.username}

# Registry

@app.post("/donors/me", response_model=Donor, tags=["registry"])
async def register_donor(p: ProfileIn, background_tasks: BackgroundTasks,
                         identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    donor = ledger.register_donor(identity, p.name, p.contact)
    background_tasks.add_task(audit.outbox.flush)
    return donor

@app.delete("/donors/me", status_code=status.HTTP_204_NO_CONTENT, tags=["registry"])
async def unregister_donor(background_tasks: BackgroundTasks,
                           identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    ledger.unregister_donor(identity)
    background_tasks.add_task(audit.outbox.flush)
    return None

@app.get("/donors/{identity}", response_model=Donor, tags=["registry"])
async def get_donor(identity: str, ledger: DonationLedger = Depends(get_ledger)):
    return ledger.donor_profile(identity)

@app.get("/donors/{identity}/donations", response_model=List[Donation], tags=["queries"])
async def donations_for_donor(identity: str, ledger: DonationLedger = Depends(get_ledger)):
    return ledger.donations_for_donor(identity)

@app.post("/recipients/me", response_model=Recipient, tags=["registry"])
async def register_recipient(p: ProfileIn, background_tasks: BackgroundTasks,
                             identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    recipient = ledger.register_recipient(identity, p.name, p.contact)
    background_tasks.add_task(audit.outbox.flush)
    return recipient

@app.delete("/recipients/me", status_code=status.HTTP_204_NO_CONTENT, tags=["registry"])
async def unregister_recipient(background_tasks: BackgroundTasks,
                               identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    ledger.unregister_recipient(identity)
    background_tasks.add_task(audit.outbox.flush)
    return None

@app.get("/recipients/{identity}", response_model=Recipient, tags=["registry"])
async def get_recipient(identity: str, ledger: DonationLedger = Depends(get_ledger)):
    return ledger.recipient_profile(identity)

@app.get("/recipients/{identity}/donations", response_model=List[Donation], tags=["queries"])
async def donations_for_recipient(identity: str, ledger: DonationLedger = Depends(get_ledger)):
    return ledger.donations_for_recipient(identity)

# Donations

@app.post("/donations", response_model=Created, status_code=status.HTTP_201_CREATED, tags=["donations"])
async def create_donation(d: DonationCreate, background_tasks: BackgroundTasks,
                          identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    donation_id = ledger.create_donation(
        identity,
        title=d.title,
        description=d.description,
        quantity=d.quantity,
        available_from=d.available_from,
        available_until=d.available_until,
        location_note=d.location_note,
    )
    background_tasks.add_task(audit.outbox.flush)
    return {"id": donation_id}

@app.get("/donations", response_model=List[Donation], tags=["queries"])
async def latest_donations(limit: int = Query(0, ge=0), ledger: DonationLedger = Depends(get_ledger)):
    return ledger.latest_donations(limit)

@app.get("/donations/count", response_model=Count, tags=["queries"])
async def donation_count(ledger: DonationLedger = Depends(get_ledger)):
    return {"count": ledger.donation_count()}

@app.get("/donations/{donation_id}", response_model=Donation, tags=["queries"])
async def get_donation(donation_id: int, ledger: DonationLedger = Depends(get_ledger)):
    return ledger.get_donation(donation_id)

@app.post("/donations/{donation_id}/claim", response_model=Donation, tags=["donations"])
async def claim_donation(donation_id: int, background_tasks: BackgroundTasks,
                         identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.claim_donation(identity, donation_id)
    background_tasks.add_task(audit.outbox.flush)
    return d

@app.post("/donations/{donation_id}/pickup", response_model=Donation, tags=["donations"])
async def mark_picked_up(donation_id: int, background_tasks: BackgroundTasks,
                         identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.mark_picked_up(identity, donation_id)
    background_tasks.add_task(audit.outbox.flush)
    return d

@app.post("/donations/{donation_id}/complete", response_model=Donation, tags=["donations"])
async def complete_donation(donation_id: int, background_tasks: BackgroundTasks,
                            identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.complete_donation(identity, donation_id)
    background_tasks.add_task(audit.outbox.flush)
    return d

@app.post("/donations/{donation_id}/cancel", response_model=Donation, tags=["donations"])
async def cancel_donation(donation_id: int, req: CancelRequest, background_tasks: BackgroundTasks,
                          identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.cancel_donation(identity, donation_id, req.reason)
    background_tasks.add_task(audit.outbox.flush)
    return d

# Administrative override

@app.get("/admin", response_model=Administrator, tags=["admin"])
async def get_administrator(ledger: DonationLedger = Depends(get_ledger)):
    return {"administrator": ledger.administrator}

@app.post("/admin/donations/{donation_id}/complete", response_model=Donation, tags=["admin"])
async def admin_force_complete(donation_id: int, background_tasks: BackgroundTasks,
                               identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.admin_force_complete(identity, donation_id)
    background_tasks.add_task(audit.outbox.flush)
    return d

@app.post("/admin/donations/{donation_id}/cancel", response_model=Donation, tags=["admin"])
async def admin_force_cancel(donation_id: int, req: CancelRequest, background_tasks: BackgroundTasks,
                             identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    d = ledger.admin_force_cancel(identity, donation_id, req.reason)
    background_tasks.add_task(audit.outbox.flush)
    return d

@app.post("/admin/transfer", response_model=Administrator, tags=["admin"])
async def transfer_administration(req: TransferRequest, background_tasks: BackgroundTasks,
                                  identity: str = Depends(get_current_identity), ledger: DonationLedger = Depends(get_ledger)):
    if ledger.is_admin(identity) and not role.accounts.get_hash(req.new_identity):
        raise InvalidIdentity(f"{req.new_identity!r} has no account", identity=identity)
    new_admin = ledger.transfer_administration(identity, req.new_identity)
    background_tasks.add_task(audit.outbox.flush)
    return {"administrator": new_admin}

# Notifications

@app.get("/notifications", response_model=List[Notification], tags=["notifications"])
async def list_notifications(since: int = Query(0, ge=0), ledger: DonationLedger = Depends(get_ledger)):
    return ledger.notifications(since)

def main():
    uvicorn.run(app, host=HOST, port=PORT, log_level=LOG_LEVEL)

if __name__ == "__main__":
    main()
