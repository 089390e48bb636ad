"""
Client matching for inbound content.

Resolves a sender header ("Jane Doe <jane@acme.com>" or "jane@acme.com")
to a client account:
1. exact domain match against the client's primary domain
2. exact (case-insensitive) match against any client contact email

No fuzzy or partial domain matching. Malformed headers resolve to no match.
"""
import logging
from email.utils import parseaddr
from typing import Optional

from api.services.crm_types import Client

logger = logging.getLogger(__name__)


def extract_email_address(from_header: Optional[str]) -> Optional[str]:
    """
    Pull a lowercase email address out of a From header.

    Returns None when the header doesn't contain a usable address.
    """
    if not from_header or not isinstance(from_header, str):
        return None

    _, address = parseaddr(from_header.strip())
    address = address.strip().lower()

    local, sep, domain = address.partition("@")
    if not sep or not local or not domain or "@" in domain or "." not in domain:
        return None
    return address


def email_domain(address: str) -> str:
    return address.rsplit("@", 1)[1]


def find_client_by_domain(domain: str, clients: list[Client]) -> Optional[Client]:
    domain = domain.strip().lower()
    if not domain:
        return None
    for client in clients:
        if client.domain and client.domain.strip().lower() == domain:
            return client
    return None


def find_client_by_email(address: str, clients: list[Client]) -> Optional[Client]:
    address = address.strip().lower()
    for client in clients:
        for contact in client.contacts:
            if contact.email and contact.email.strip().lower() == address:
                return client
    return None


def find_client_for_email(from_header: Optional[str], clients: list[Client]) -> Optional[Client]:
    """
    Match a sender to a client: domain first, then contact email.

    Args:
        from_header: Raw From header value
        clients: Account directory, searched in order

    Returns:
        The first matching client, or None
    """
    address = extract_email_address(from_header)
    if address is None:
        logger.debug(f"Unparseable sender header: {from_header!r}")
        return None

    client = find_client_by_domain(email_domain(address), clients)
    if client:
        return client
    return find_client_by_email(address, clients)
