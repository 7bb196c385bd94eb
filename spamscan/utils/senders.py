"""Sender address extraction for whitelist/blacklist training."""

import re
from email.utils import parseaddr

from spamscan.utils.logging import logger

# Header fields examined, in priority order
SENDER_FIELDS = ("from", "reply-to", "return-path", "sender")

MAX_SENDERS = 2

_BOUNCE_LOCAL = re.compile(r"^(bounce[_\-+]|bounces\+)")
_TIMESTAMP_LOCAL = re.compile(r"^20\d{10,}")
_DOTTED_NUMBERS = re.compile(r"\d+\.\d+")
_UUID_LOCAL = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"
)
_HEX_TOKEN_LOCAL = re.compile(r"^[0-9a-f]{16,}$")
_ADDRESS = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

RELAY_DOMAIN_MARKERS = ("bounces.", "bounce.", "email.", "mailer", "relay")

KNOWN_RELAY_DOMAINS = (
    "lnk01.com",
    "cyberimpact.com",
    "amazonmusic.com",
    "primevideo.com",
    "questrade.com",
    "res-marriott.com",
)


def is_human_address(address: str) -> bool:
    """Check whether an address looks like a person rather than a mailer.

    Rejects bounce local parts, long high-entropy tokens, UUID or hex
    tokens, timestamp prefixes, repeated dotted numbers, and relay domains.
    """
    if not address or "@" not in address:
        return False

    local, _, domain = address.rpartition("@")
    if not local or not domain:
        return False

    local_lower = local.lower()
    domain_lower = domain.lower()

    if _BOUNCE_LOCAL.match(local_lower):
        return False

    if len(local) > 30 and re.search(r"[a-z]", local_lower) and re.search(r"\d", local):
        alnum = len(re.findall(r"[a-z0-9]", local_lower))
        if alnum / len(local) > 0.7:
            return False

    if _UUID_LOCAL.search(local_lower) or _HEX_TOKEN_LOCAL.match(local_lower):
        return False

    if _TIMESTAMP_LOCAL.match(local):
        return False

    if len(_DOTTED_NUMBERS.findall(local)) >= 2:
        return False

    if any(marker in domain_lower for marker in RELAY_DOMAIN_MARKERS):
        return False

    if any(domain_lower.endswith(relay) for relay in KNOWN_RELAY_DOMAINS):
        return False

    return True


def parse_address(value: str) -> str | None:
    """Extract the bare address from a header value like ``Name <a@b.c>``."""
    _, address = parseaddr(value)
    address = address.strip()
    if not _ADDRESS.match(address):
        return None
    return address


def extract_senders(headers: dict[str, str]) -> list[str]:
    """Extract up to two human sender addresses from message headers.

    Args:
        headers: Headers with lower-cased keys.

    Returns:
        Lower-cased, de-duplicated addresses in header priority order.
    """
    candidates: list[str] = []

    for field_name in SENDER_FIELDS:
        value = headers.get(field_name)
        if not value:
            continue

        address = parse_address(value)
        if address is None:
            continue

        if not is_human_address(address):
            logger.info(f"Rejected {field_name} address {address} as machine-generated")
            continue

        address = address.lower()
        if address not in candidates:
            candidates.append(address)

    return candidates[:MAX_SENDERS]


def extract_sender_addresses(messages: list) -> list[str]:
    """Unique sender addresses across messages, first occurrence first."""
    senders: list[str] = []

    for message in messages:
        found = extract_senders(message.headers)
        if found:
            logger.debug(f"UID {message.uid}: extracted senders {found}")
        else:
            logger.debug(f"UID {message.uid}: no extractable senders")
        for address in found:
            if address not in senders:
                senders.append(address)

    return senders
