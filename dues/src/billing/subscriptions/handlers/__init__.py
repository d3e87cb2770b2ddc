"""Command handlers behind the membership service."""

from .customer import CustomerHandler
from .enrolment import EnrolmentHandler, EnrolmentResult, PriceResolver
from .lifecycle import LifecycleHandler
from .state import MemberBillingState, gateway_errors, load_member_state

__all__ = [
    'CustomerHandler',
    'EnrolmentHandler',
    'EnrolmentResult',
    'PriceResolver',
    'LifecycleHandler',
    'MemberBillingState',
    'gateway_errors',
    'load_member_state',
]
