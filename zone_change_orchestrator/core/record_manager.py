"""
Record Manager - Change planning for a zone

This module diffs the live recordsets of a zone against the desired ones and
turns the difference into mutations, ensuring idempotent runs and safe zone
boundaries.
"""

import logging
from typing import Dict, List, Tuple

from ..errors import ValidationError
from ..utils.validators import is_in_zone, sanitize_fqdn
from .mutations import Mutation
from .verification import normalize_values

logger = logging.getLogger(__name__)

# Never removed when pruning; the control plane owns them
PROTECTED_TYPES = ("SOA", "NS")


class RecordManager:
    """Plans record changes and checks desired records for consistency."""

    def __init__(self, dns_client=None):
        """Initialize record manager with an optional Edge DNS client."""
        self.dns_client = dns_client

    def plan_changes(
        self,
        current_records: List[Dict],
        desired_records: List[Dict],
        zone: str,
        prune: bool = False,
    ) -> Dict:
        """
        Analyze changes between live and desired recordsets.

        Args:
            current_records: Live recordsets ({name, type, ttl, rdata})
            desired_records: Desired recordsets, usually from CSV
            zone: DNS zone name for safety validation
            prune: Also delete live records missing from the desired set

        Returns:
            Dictionary containing categorized changes and the mutations to apply
        """
        logger.info("Analyzing DNS record changes...")
        zone = sanitize_fqdn(zone)

        errors = self.validate_records(desired_records)
        if errors:
            raise ValidationError("; ".join(errors))

        self._validate_zone_safety(current_records, desired_records, zone)

        current = {
            self._key(record): record
            for record in current_records
            if is_in_zone(record["name"], zone)
        }

        adds = []
        replaces = []
        deletes = []
        no_changes = []
        mutations = []

        for desired in desired_records:
            name, record_type = self._key(desired)
            values = list(desired["rdata"])
            ttl = int(desired.get("ttl", 300))
            existing = current.get((name, record_type))

            if existing is None:
                adds.append(desired)
                mutations.append(Mutation.add(name, record_type, values, ttl))
                logger.info(f"Add needed: {name} {record_type} -> {values}")
            elif self._unchanged(existing, desired):
                no_changes.append(desired)
                logger.info(f"No change needed: {name} {record_type}")
            else:
                replaces.append(desired)
                mutations.append(
                    Mutation.replace(
                        name,
                        record_type,
                        values,
                        ttl,
                        previous_values=existing["rdata"],
                        previous_ttl=existing.get("ttl"),
                    )
                )
                logger.info(
                    f"Replace needed: {name} {record_type} {existing['rdata']} -> {values}"
                )

        if prune:
            desired_keys = {self._key(record) for record in desired_records}
            for key, existing in current.items():
                if key in desired_keys or key[1] in PROTECTED_TYPES:
                    continue
                deletes.append(existing)
                mutations.append(
                    Mutation.delete(key[0], key[1], existing["rdata"], existing.get("ttl"))
                )
                logger.info(f"Delete needed: {key[0]} {key[1]}")

        changes = {
            "adds": adds,
            "replaces": replaces,
            "deletes": deletes,
            "no_changes": no_changes,
            "total_changes": len(mutations),
            "mutations": mutations,
        }

        logger.info(
            f"Change analysis complete: {len(adds)} adds, {len(replaces)} replaces, "
            f"{len(deletes)} deletes, {len(no_changes)} no changes"
        )

        return changes

    def fetch_current(self, zone: str) -> List[Dict]:
        """Read the live recordsets of ``zone`` through the client."""
        if self.dns_client is None:
            raise ValueError("RecordManager has no DNS client to read the zone from")
        return self.dns_client.list_recordsets(zone)

    @staticmethod
    def _key(record: Dict) -> Tuple[str, str]:
        return sanitize_fqdn(record["name"]), record["type"].upper()

    @staticmethod
    def _unchanged(existing: Dict, desired: Dict) -> bool:
        record_type = desired["type"].upper()
        if int(existing.get("ttl", 0)) != int(desired.get("ttl", 300)):
            return False
        return normalize_values(record_type, existing["rdata"]) == normalize_values(
            record_type, desired["rdata"]
        )

    def _validate_zone_safety(
        self, current_records: List[Dict], desired_records: List[Dict], zone: str
    ):
        """Validate that operations are safe for the specified zone."""
        logger.info(f"Validating zone safety for zone: {zone}")

        for record in desired_records:
            if not is_in_zone(record["name"], zone):
                raise ValidationError(f"Record name '{record['name']}' is not within zone '{zone}'")

        for record in current_records:
            if not is_in_zone(record["name"], zone):
                logger.warning(
                    f"Found record outside target zone: {record['name']} "
                    f"(zone: {zone}) - will not be modified"
                )

    def validate_records(self, records: List[Dict]) -> List[str]:
        """Validate desired record structure and return any validation errors."""
        errors = []
        seen = {}

        for i, record in enumerate(records, start=2):  # Start at 2 to account for header
            if not record.get("name") or not record.get("type"):
                errors.append(f"Row {i}: Missing name or type")
                continue

            if not record.get("rdata"):
                errors.append(f"Row {i}: No record data for {record['name']}")
                continue

            key = self._key(record)
            if key in seen:
                errors.append(
                    f"Row {i}: Duplicate {key[1]} record for '{record['name']}' "
                    f"(first seen at row {seen[key]})"
                )
            else:
                seen[key] = i

        return errors
