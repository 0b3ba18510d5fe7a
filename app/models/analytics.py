# FILE: app/models/analytics.py
from __future__ import annotations

from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Date,
    DateTime,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class DailySalesAnalytics(Base):
    """
    One row per calendar day (in settings.TIMEZONE).

    Maintained with relative deltas only; several bills of the same day
    share this row.
    """
    __tablename__ = "daily_sales_analytics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, unique=True, index=True)

    total_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    total_bills = Column(Integer, nullable=False, default=0)
    total_services = Column(Integer, nullable=False, default=0)

    paid_bills = Column(Integer, nullable=False, default=0)
    unpaid_bills = Column(Integer, nullable=False, default=0)
    partially_paid_bills = Column(Integer, nullable=False, default=0)

    # total_revenue / total_bills, 0 when there are no bills
    average_bill_amount = Column(Numeric(14, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    service_analytics = relationship(
        "ServiceDailyAnalytics",
        back_populates="daily_analytics",
        cascade="all, delete-orphan",
    )
    category_analytics = relationship(
        "CategoryDailyAnalytics",
        back_populates="daily_analytics",
        cascade="all, delete-orphan",
    )


class ServiceDailyAnalytics(Base):
    __tablename__ = "service_daily_analytics"
    __table_args__ = (UniqueConstraint(
        "daily_analytics_id",
        "service_name",
        name="uq_service_daily_analytics_day_service"), )

    id = Column(Integer, primary_key=True, index=True)
    daily_analytics_id = Column(
        Integer,
        ForeignKey("daily_sales_analytics.id", ondelete="CASCADE"),
        nullable=False,
    )

    service_id = Column(Integer, nullable=True)
    service_name = Column(String(191), nullable=False)
    service_category = Column(String(40), nullable=False)

    total_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    quantity_sold = Column(Integer, nullable=False, default=0)
    average_price = Column(Numeric(12, 2), nullable=False, default=0)

    daily_analytics = relationship("DailySalesAnalytics",
                                   back_populates="service_analytics")


class CategoryDailyAnalytics(Base):
    __tablename__ = "category_daily_analytics"
    __table_args__ = (UniqueConstraint(
        "daily_analytics_id",
        "category",
        name="uq_category_daily_analytics_day_category"), )

    id = Column(Integer, primary_key=True, index=True)
    daily_analytics_id = Column(
        Integer,
        ForeignKey("daily_sales_analytics.id", ondelete="CASCADE"),
        nullable=False,
    )

    category = Column(String(40), nullable=False)

    total_revenue = Column(Numeric(14, 2), nullable=False, default=0)
    # number of billed lines in this category
    total_services = Column(Integer, nullable=False, default=0)
    quantity_sold = Column(Integer, nullable=False, default=0)

    daily_analytics = relationship("DailySalesAnalytics",
                                   back_populates="category_analytics")
