"""Member directory access and Stripe customer links."""

from .directory import (
    CustomerLinkStore,
    MemberDirectory,
    SqlCustomerLinkStore,
    SqlMemberDirectory,
    customer_link_store,
    member_directory,
)

__all__ = [
    'CustomerLinkStore',
    'MemberDirectory',
    'SqlCustomerLinkStore',
    'SqlMemberDirectory',
    'customer_link_store',
    'member_directory',
]
