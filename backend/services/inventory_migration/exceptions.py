"""
Inventory Migration - Exceptions

Only fatal conditions and group-level failures are modelled as exceptions.
Record coercion problems are tolerated in the schema, and verification
findings are reported rather than raised.
"""

from typing import Any, Dict, Optional


class MigrationError(Exception):
    """Base exception for inventory migration errors."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class MigrationConfigError(MigrationError):
    """Raised when the environment holds an invalid migration setting."""
    pass


class RepositoryUnavailableError(MigrationError):
    """
    Raised when the document store cannot be reached or the legacy
    collection cannot be read at all. Always fatal for the run.
    """
    pass


class InvalidRecordError(MigrationError):
    """Raised when one legacy document cannot be read into the record schema."""
    def __init__(self, legacy_id: str, message: str):
        self.legacy_id = legacy_id
        super().__init__(message, details={"legacy_id": legacy_id})


class GroupMigrationError(MigrationError):
    """Raised when a single reference group cannot be aggregated or persisted."""
    def __init__(self, reference_no: str, kind: str, message: str):
        self.reference_no = reference_no
        self.kind = kind
        super().__init__(
            f"{kind} order {reference_no}: {message}",
            details={"reference_no": reference_no, "kind": kind}
        )
