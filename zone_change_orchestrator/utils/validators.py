"""
Validators - Input validation for DNS record mutations

This module provides validation functions for record names, types, TTLs
and record values so that malformed changes never reach the staging area.
"""

import ipaddress
import logging
import re

logger = logging.getLogger(__name__)

MAX_TTL = 2147483647

SUPPORTED_RECORD_TYPES = frozenset(
    {
        "A", "AAAA", "AFSDB", "AKAMAICDN", "AKAMAITLC", "CAA", "CERT",
        "CNAME", "DNSKEY", "DS", "HINFO", "HTTPS", "LOC", "MX",
        "NAPTR", "NS", "NSEC3", "NSEC3PARAM", "PTR", "RP", "RRSIG",
        "SOA", "SPF", "SRV", "SSHFP", "SVCB", "TLSA", "TXT",
    }
)

_LABEL_RE = re.compile(r"^_?[a-zA-Z0-9]([a-zA-Z0-9_-]*[a-zA-Z0-9])?$")


def validate_fqdn(fqdn: str) -> bool:
    """
    Validate a record owner name.

    Labels may start with an underscore (service labels such as
    ``_acme-challenge``) and the first label may be a ``*`` wildcard.

    Args:
        fqdn: The name to validate

    Returns:
        True if valid, False otherwise
    """
    if not fqdn or not isinstance(fqdn, str):
        return False

    fqdn = fqdn.rstrip(".")

    if len(fqdn) > 253:
        logger.warning(f"FQDN too long: {fqdn}")
        return False

    labels = fqdn.split(".")

    if len(labels) < 2:
        logger.warning(f"FQDN must have at least 2 labels: {fqdn}")
        return False

    if any(label == "" for label in labels):
        logger.warning(f"FQDN contains empty labels: {fqdn}")
        return False

    for i, label in enumerate(labels):
        if i == 0 and label == "*":
            continue
        if not _validate_label(label):
            logger.warning(f"Invalid label '{label}' in FQDN: {fqdn}")
            return False

    return True


def _validate_label(label: str) -> bool:
    """Validate a single domain label."""
    if len(label) == 0 or len(label) > 63:
        return False

    return bool(_LABEL_RE.match(label))


def validate_ipv4(ipv4: str) -> bool:
    """
    Validate IPv4 address.

    Args:
        ipv4: The IPv4 address to validate

    Returns:
        True if valid, False otherwise
    """
    if not ipv4 or not isinstance(ipv4, str):
        return False

    try:
        ipaddress.IPv4Address(ipv4.strip())
        return True
    except ipaddress.AddressValueError:
        logger.warning(f"Invalid IPv4 address: {ipv4}")
        return False


def validate_ipv6(ipv6: str) -> bool:
    """Validate IPv6 address."""
    if not ipv6 or not isinstance(ipv6, str):
        return False

    try:
        ipaddress.IPv6Address(ipv6.strip())
        return True
    except ipaddress.AddressValueError:
        logger.warning(f"Invalid IPv6 address: {ipv6}")
        return False


def validate_zone_name(zone: str) -> bool:
    """
    Validate DNS zone name.

    Args:
        zone: The zone name to validate

    Returns:
        True if valid, False otherwise
    """
    if not zone or not isinstance(zone, str):
        return False

    if zone.startswith("*") or not validate_fqdn(zone):
        return False

    try:
        ipaddress.ip_address(zone)
    except ValueError:
        return True
    return False


def validate_ttl(ttl) -> bool:
    """TTL must be a positive 32-bit signed integer."""
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        return False
    return 0 < ttl <= MAX_TTL


def validate_record_type(record_type: str) -> bool:
    """Check the record type against the types the control plane accepts."""
    if not record_type or not isinstance(record_type, str):
        return False
    return record_type.upper() in SUPPORTED_RECORD_TYPES


def validate_record_value(record_type: str, value: str) -> bool:
    """Validate one rdata value for the given record type."""
    if not value or not isinstance(value, str) or not value.strip():
        return False

    record_type = record_type.upper()
    if record_type == "A":
        return validate_ipv4(value)
    if record_type == "AAAA":
        return validate_ipv6(value)
    return True


def is_in_zone(fqdn: str, zone: str) -> bool:
    """Check if a name is the zone apex or below it."""
    name = sanitize_fqdn(fqdn)
    origin = sanitize_fqdn(zone)
    return name == origin or name.endswith(f".{origin}")


def sanitize_fqdn(fqdn: str) -> str:
    """
    Normalize a name for comparison.

    Args:
        fqdn: The FQDN to sanitize

    Returns:
        Lower-cased name without surrounding whitespace or dots
    """
    if not fqdn:
        return fqdn

    fqdn = fqdn.strip().strip(".").lower()

    fqdn = re.sub(r"\.+", ".", fqdn)

    return fqdn
