"""Exception taxonomy for campusgraph.

Resolution misses are never raised; they come back as zero-confidence
results. The exceptions below cover invalid requests, unknown entities
outside of resolution, and backing-store failures.
"""

from typing import Any


class CampusGraphError(Exception):
    """Base error with a stable machine-readable code."""

    error_code = "CAMPUSGRAPH_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidQueryError(CampusGraphError):
    """A required filter or parameter is missing or out of range."""

    error_code = "INVALID_QUERY"


class EntityNotFoundError(CampusGraphError):
    """An entity needed to seed an operation does not exist."""

    error_code = "NOT_FOUND"

    def __init__(self, entity_type: str, identifier: str):
        super().__init__(
            f"{entity_type} not found: {identifier}",
            details={"entity_type": entity_type, "identifier": identifier},
        )
        self.entity_type = entity_type
        self.identifier = identifier


class AmbiguousInputError(CampusGraphError):
    """Several equally confident matches exist.

    Reserved: the resolver currently returns the single best match and
    callers ask for suggestions separately.
    """

    error_code = "AMBIGUOUS_INPUT"


class StoreUnavailableError(CampusGraphError):
    """The backing store timed out or the connection failed."""

    error_code = "STORE_UNAVAILABLE"


class RecordValidationError(CampusGraphError):
    """A store row could not be converted into an entity variant."""

    error_code = "INVALID_RECORD"
