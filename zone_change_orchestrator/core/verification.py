"""
Resolution Verifier - Checks that a change is observable in DNS

Queries go to real resolvers, independently of the control plane's own
activation status. A mismatch is a soft signal: resolver caches and
propagation delays are outside the orchestrator's control.
"""

import ipaddress
import logging
from typing import FrozenSet, Iterable, List, Optional

import dns.exception
import dns.resolver

from ..utils.cancellation import CancellationToken, ensure_token
from ..utils.validators import sanitize_fqdn

logger = logging.getLogger(__name__)


class ResolutionVerifier:
    """Verifies record values against public or authoritative resolvers."""

    def __init__(
        self,
        nameservers: Optional[List[str]] = None,
        port: int = 53,
        attempts: int = 5,
        backoff: float = 30.0,
        timeout: float = 5.0,
        use_authoritative: bool = False,
        resolver=None,
    ):
        self.nameservers = list(nameservers or [])
        self.port = port
        self.attempts = attempts
        self.backoff = backoff
        self.timeout = timeout
        self.use_authoritative = use_authoritative
        self._resolver = resolver
        self._authoritative = {}

    def _initialize_dns_resolver(self, nameservers: List[str]) -> dns.resolver.Resolver:
        """Initialize the DNS resolver with nameserver, port and timeout settings."""
        resolver = dns.resolver.Resolver(configure=not nameservers)
        if nameservers:
            resolver.nameservers = nameservers
        resolver.port = self.port
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        resolver.cache = None
        return resolver

    def resolver_for(self, zone: Optional[str] = None):
        """Resolver to use for names in ``zone``."""
        if self._resolver is not None:
            return self._resolver
        if self.use_authoritative and zone:
            zone = sanitize_fqdn(zone)
            if zone not in self._authoritative:
                servers = self.authoritative_servers(zone)
                self._authoritative[zone] = self._initialize_dns_resolver(
                    servers or self.nameservers
                )
            return self._authoritative[zone]
        return self._initialize_dns_resolver(self.nameservers)

    def authoritative_servers(self, zone: str) -> List[str]:
        """Addresses of the zone's NS hosts, looked up through the default resolver."""
        lookup = self._initialize_dns_resolver(self.nameservers)
        addresses = []
        try:
            for ns in lookup.resolve(zone, "NS"):
                for address in lookup.resolve(str(ns), "A"):
                    addresses.append(str(address))
        except dns.exception.DNSException as e:
            logger.warning(f"Could not find authoritative servers for {zone}: {e}")
        return addresses

    def verify(
        self,
        name: str,
        record_type: str,
        expected_values: Iterable[str],
        attempts: Optional[int] = None,
        zone: Optional[str] = None,
        token: Optional[CancellationToken] = None,
    ) -> bool:
        """
        Return True once resolution returns exactly ``expected_values``.

        An empty expected set verifies that the name/type no longer resolves.
        Returns False when every attempt failed to match.
        """
        token = ensure_token(token)
        attempts = attempts if attempts is not None else self.attempts
        expected = normalize_values(record_type, expected_values)
        resolver = self.resolver_for(zone)

        for attempt in range(1, attempts + 1):
            observed = self._query(resolver, name, record_type)
            if observed is not None and observed == expected:
                logger.info(
                    f"Verified {name} {record_type} -> {sorted(expected) or 'absent'} "
                    f"(attempt {attempt})"
                )
                return True

            logger.info(
                f"{name} {record_type} resolves to {sorted(observed or ()) or 'nothing'}, "
                f"expected {sorted(expected) or 'nothing'} (attempt {attempt}/{attempts})"
            )
            if attempt < attempts:
                token.wait(self.backoff)

        logger.warning(f"Could not verify {name} {record_type} after {attempts} attempts")
        return False

    @staticmethod
    def _query(resolver, name: str, record_type: str) -> Optional[FrozenSet[str]]:
        try:
            answers = resolver.resolve(name, record_type)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return frozenset()
        except dns.exception.DNSException as e:
            logger.debug(f"DNS query failed for {name} ({record_type}): {e}")
            return None
        return normalize_values(record_type, [str(answer) for answer in answers])


def normalize_values(record_type: str, values: Iterable[str]) -> FrozenSet[str]:
    """Case-fold, drop trailing dots and TXT quoting so values compare as sets."""
    normalized = set()
    for value in values:
        value = value.strip()
        if record_type.upper() in ("TXT", "SPF"):
            value = "".join(part.strip('"') for part in value.split('" "'))
        elif record_type.upper() in ("A", "AAAA"):
            try:
                value = str(ipaddress.ip_address(value))
            except ValueError:
                value = value.lower()
        else:
            value = value.rstrip(".").lower()
        normalized.add(value)
    return frozenset(normalized)
