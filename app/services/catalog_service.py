# FILE: app/services/catalog_service.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from app.models.catalog import Service
from app.services.billing_errors import NotFoundError, UnavailableError


@dataclass(frozen=True)
class ServiceSnapshot:
    id: int
    name: str
    category: str
    price: Decimal
    is_activated: bool
    is_available: bool


def _snapshot(svc: Service) -> ServiceSnapshot:
    return ServiceSnapshot(
        id=int(svc.id),
        name=svc.name,
        category=svc.category,
        price=Decimal(str(svc.price or 0)),
        is_activated=bool(svc.is_activated),
        is_available=bool(svc.is_available),
    )


def resolve_service(db: Session, service_id: int) -> ServiceSnapshot:
    """
    Look up a billable service. Deactivated or unavailable services are
    rejected so a bill never snapshots something the clinic stopped offering.
    """
    svc = db.get(Service, int(service_id))
    if not svc:
        raise NotFoundError("Service not found",
                            detail={"service_id": service_id})
    if not svc.is_activated:
        raise UnavailableError(f"Service is deactivated: {svc.name}",
                               detail={"service_id": svc.id})
    if not svc.is_available:
        raise UnavailableError(f"Service is not available: {svc.name}",
                               detail={"service_id": svc.id})
    return _snapshot(svc)


def list_services(
    db: Session,
    *,
    category: Optional[str] = None,
    active_only: bool = True,
) -> List[ServiceSnapshot]:
    q = db.query(Service)
    if category:
        q = q.filter(Service.category == category)
    if active_only:
        q = q.filter(Service.is_activated.is_(True),
                     Service.is_available.is_(True))
    return [_snapshot(s) for s in q.order_by(Service.name.asc()).all()]
