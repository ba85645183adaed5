from __future__ import annotations


class HmsError(Exception):
    """Base for every failure the service layer reports to its caller."""

    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(HmsError):
    """Field-level rule broken; raised before any I/O."""

    kind = "validation"


class PersistenceConstraintError(HmsError):
    """Uniqueness or foreign-key violation reported by the store."""

    UNIQUE = "unique"
    REFERENCE = "reference"

    def __init__(self, message: str, constraint: str, field: str | None = None):
        super().__init__(message)
        self.constraint = constraint
        self.field = field

    @property
    def kind(self) -> str:
        return f"constraint:{self.constraint}"


class ConnectivityError(HmsError):
    """The store could not be reached or dropped the connection."""

    kind = "connectivity"


class NotFoundError(HmsError):
    """The row being updated or deleted no longer exists."""

    kind = "not_found"

    def __init__(self, entity: str, ident: int):
        super().__init__(f"{entity} #{ident} no longer exists. Refresh the list.")
        self.entity = entity
        self.ident = ident
