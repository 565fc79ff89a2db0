"""
Mutations - Logical record changes and their wire encoding

A Mutation describes one change to one record name and type. It is
immutable; REPLACE and DELETE mutations remember the values they overwrite
so that their structural inverse can be built for rollback.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple

from ..errors import ValidationError
from ..utils.validators import (
    is_in_zone,
    sanitize_fqdn,
    validate_fqdn,
    validate_record_type,
    validate_record_value,
    validate_ttl,
)


class Operation(str, Enum):
    ADD = "ADD"
    REPLACE = "REPLACE"
    DELETE = "DELETE"


# REPLACE is called EDIT by the changelist API
WIRE_OPERATIONS = {
    Operation.ADD: "ADD",
    Operation.REPLACE: "EDIT",
    Operation.DELETE: "DELETE",
}


@dataclass(frozen=True)
class Mutation:
    """One ADD/REPLACE/DELETE against a record name and type."""

    name: str
    record_type: str
    operation: Operation
    ttl: int = 300
    values: Tuple[str, ...] = ()
    previous_values: Tuple[str, ...] = ()
    previous_ttl: Optional[int] = None

    @classmethod
    def add(cls, name: str, record_type: str, values: Iterable[str], ttl: int = 300) -> "Mutation":
        return cls(name, record_type.upper(), Operation.ADD, ttl, tuple(values))

    @classmethod
    def replace(
        cls,
        name: str,
        record_type: str,
        values: Iterable[str],
        ttl: int = 300,
        previous_values: Iterable[str] = (),
        previous_ttl: Optional[int] = None,
    ) -> "Mutation":
        return cls(
            name,
            record_type.upper(),
            Operation.REPLACE,
            ttl,
            tuple(values),
            tuple(previous_values),
            previous_ttl,
        )

    @classmethod
    def delete(
        cls,
        name: str,
        record_type: str,
        previous_values: Iterable[str] = (),
        previous_ttl: Optional[int] = None,
    ) -> "Mutation":
        values = tuple(previous_values)
        return cls(
            name,
            record_type.upper(),
            Operation.DELETE,
            previous_ttl or 300,
            values,
            values,
            previous_ttl,
        )

    @property
    def key(self) -> Tuple[str, str]:
        return sanitize_fqdn(self.name), self.record_type.upper()

    @property
    def expected_values(self) -> Tuple[str, ...]:
        """Values resolvers should return once the mutation is live."""
        if self.operation == Operation.DELETE:
            return ()
        return self.values

    @property
    def has_prior_state(self) -> bool:
        return self.operation == Operation.ADD or bool(self.previous_values)

    def with_prior_state(self, values: Iterable[str], ttl: Optional[int]) -> "Mutation":
        """Copy of this mutation that remembers the values it overwrites."""
        values = tuple(values)
        if self.operation == Operation.DELETE:
            return replace(self, values=values, previous_values=values, previous_ttl=ttl, ttl=ttl or self.ttl)
        return replace(self, previous_values=values, previous_ttl=ttl)

    def inverse(self) -> "Mutation":
        """
        Build the structural inverse used for rollback.

        ADD(V) becomes DELETE(V), DELETE(V) becomes ADD(V) and
        REPLACE(old=A, new=B) becomes REPLACE(old=B, new=A).
        """
        if self.operation == Operation.ADD:
            return Mutation(
                self.name, self.record_type, Operation.DELETE, self.ttl,
                self.values, self.values, self.ttl,
            )

        if not self.previous_values:
            raise ValidationError(
                f"Cannot invert {self.operation.value} of {self.name} {self.record_type}: "
                f"previous values unknown"
            )

        previous_ttl = self.previous_ttl if self.previous_ttl is not None else self.ttl
        if self.operation == Operation.DELETE:
            return Mutation(
                self.name, self.record_type, Operation.ADD, previous_ttl,
                self.previous_values,
            )

        return Mutation(
            self.name, self.record_type, Operation.REPLACE, previous_ttl,
            self.previous_values, self.values, self.ttl,
        )

    def describe(self) -> str:
        values = " ".join(self.values)
        return f"{self.operation.value} {self.name} {self.ttl} {self.record_type} {values}".rstrip()


def validate_mutation(mutation: Mutation, zone: str) -> None:
    """Raise ValidationError when the mutation cannot be staged in ``zone``."""
    if not isinstance(mutation.operation, Operation):
        raise ValidationError(f"Unknown operation {mutation.operation!r}")

    if not validate_fqdn(mutation.name):
        raise ValidationError(f"Invalid record name '{mutation.name}'")

    if not is_in_zone(mutation.name, zone):
        raise ValidationError(f"Record name '{mutation.name}' is not within zone '{zone}'")

    if not validate_record_type(mutation.record_type):
        raise ValidationError(f"Unsupported record type '{mutation.record_type}'")

    if mutation.operation == Operation.DELETE:
        return

    if not validate_ttl(mutation.ttl):
        raise ValidationError(f"Invalid TTL {mutation.ttl!r} for {mutation.name}")

    if not mutation.values:
        raise ValidationError(
            f"{mutation.operation.value} of {mutation.name} {mutation.record_type} needs at least one value"
        )

    for value in mutation.values:
        if not validate_record_value(mutation.record_type, value):
            raise ValidationError(
                f"Invalid {mutation.record_type} value '{value}' for {mutation.name}"
            )


def encode_mutation(mutation: Mutation, zone: str) -> Dict:
    """Encode a mutation as an add-change request body."""
    validate_mutation(mutation, zone)

    change = {
        "name": sanitize_fqdn(mutation.name),
        "type": mutation.record_type.upper(),
        "op": WIRE_OPERATIONS[mutation.operation],
    }
    if mutation.operation != Operation.DELETE:
        change["ttl"] = mutation.ttl
        change["rdata"] = list(mutation.values)
    return change
