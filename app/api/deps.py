# app/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.models.billing import ActorRole
from app.services.audit_logger import Actor


# =========================================================
# DB
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# =========================================================
# ACTOR
# =========================================================
def current_actor(
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """
    Identity of the staff member performing the call, as forwarded by the
    authenticating gateway. Only clinic roles may touch billing.
    """
    name = (x_actor_name or "").strip()
    if not name:
        raise HTTPException(status_code=401, detail="Missing actor identity")

    role = (x_actor_role or "").strip().lower()
    try:
        role = ActorRole(role).value
    except ValueError:
        raise HTTPException(status_code=403, detail="Role not allowed")
    return Actor(name=name, role=role)
