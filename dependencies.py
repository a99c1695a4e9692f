from collections.abc import Generator
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from db import SessionLocal
from orm import UserORM
from signatures import SignatureStore, get_default_store

WRITE_ROLES = {"ADMIN", "GESTIONNAIRE"}


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_signature_store() -> SignatureStore:
    return get_default_store()


def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> UserORM:
    # token verification happens upstream; we only receive the resolved user id
    if not x_user_id:
        raise HTTPException(status_code=401, detail="missing X-User-Id")
    user = db.get(UserORM, x_user_id)
    if not user:
        raise HTTPException(status_code=401, detail="unknown user")
    return user


def require_writer(user: UserORM = Depends(get_current_user)) -> UserORM:
    if user.role not in WRITE_ROLES:
        raise HTTPException(status_code=403, detail="read-only role")
    return user
