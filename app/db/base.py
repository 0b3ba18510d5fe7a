# app/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All clinic tables (catalog, clinical, billing, audit, analytics) inherit from this."""
    pass
