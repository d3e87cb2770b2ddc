"""
Member and Customer Entities

Members are owned by the member directory. The billing core only reads
them; the gateway customer link lives in billing's own table.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional


@dataclass(frozen=True)
class Member:
    """
    An association member.

    Attributes:
        id: Directory member ID
        email: Unique email address
        tier_id: Membership tier identifier
        first_name / last_name: Used for the gateway customer name
        hospital / address: Profile fields, passed through untouched
        newsletter_opt_in: Newsletter preference
        subscribed_until: Legacy manual override of the membership end date
    """
    id: str
    email: str
    tier_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    hospital: Optional[str] = None
    address: Optional[str] = None
    newsletter_opt_in: bool = False
    subscribed_until: Optional[datetime] = None

    @property
    def full_name(self) -> Optional[str]:
        name = ' '.join(part for part in (self.first_name, self.last_name) if part)
        return name or None


@dataclass(frozen=True)
class Customer:
    """A gateway customer."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    deleted: bool = False
    default_payment_method: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Price:
    """A recurring gateway price."""
    id: str
    unit_amount: int
    currency: str
    interval: Optional[str] = None
    lookup_key: Optional[str] = None
    product_id: Optional[str] = None
    active: bool = True
