import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict
from fastapi import Depends, HTTPException, status, APIRouter
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, Field
import database

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "supersecret_dev_key_change_me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token")
router = APIRouter()

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class AccountCreate(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=8)

class Identity(BaseModel):
    identity: str


class AccountStore:
    """Login accounts: username -> argon2 hash. The username is the ledger identity."""

    def __init__(self):
        self._accounts: Dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, accounts: Dict[str, str]):
        with self._lock:
            self._accounts.update(accounts)

    def add(self, username: str, hashed_password: str) -> bool:
        with self._lock:
            if username in self._accounts:
                return False
            self._accounts[username] = hashed_password
            return True

    def get_hash(self, username: str) -> Optional[str]:
        return self._accounts.get(username)

accounts = AccountStore()

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def authenticate_user(username: str, password: str) -> Optional[str]:
    hashed = accounts.get_hash(username)
    if not hashed:
        return None
    if not verify_password(password, hashed):
        return None
    return username

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt

async def get_current_identity(token: str = Depends(oauth2_scheme)) -> str:
    credentials_exception = HTTPException(
        status_code = status.HTTP_401_UNAUTHORIZED,
        detail = "Could not validate credentials",
        headers = {"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        identity: str = payload.get("sub")
        if not identity:
            raise credentials_exception
    except JWTError:
        raise credentials_exception
    return identity

async def add_account(username: str, password: str) -> bool:
    hashed = get_password_hash(password)
    if not accounts.add(username, hashed):
        return False
    if database.is_enabled():
        await database.save_account(username, hashed)
    return True

@router.post("/token", response_model=Token, tags=["accounts"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    identity = authenticate_user(form_data.username, form_data.password)
    if not identity:
        raise HTTPException(
            status_code = status.HTTP_401_UNAUTHORIZED,
            detail = "Incorrect username or password",
            headers = {"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(data={"sub": identity})
    return {"access_token": access_token, "token_type": "bearer"}

@router.get("/me", response_model=Identity, tags=["accounts"])
async def read_me(identity: str = Depends(get_current_identity)):
    return {"identity": identity}
