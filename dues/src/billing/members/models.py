"""
Billing Customer Model

Link between a directory member and their Stripe customer. Owned by the
billing core so the member record itself is never written.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from dues.database.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BillingCustomer(Base):
    """Member to Stripe customer link"""

    __tablename__ = 'billing_customers'

    member_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    customer_id: Mapped[str] = mapped_column(String(255), index=True)
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
