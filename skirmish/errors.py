"""
Error kinds raised by the simulation engine.

Every rejected action raises a subclass of ActionError before any state is
touched, so callers can catch it and carry on. ConfigurationError is the one
fatal family: a match cannot start from incomplete rule tables.
"""

from typing import Optional


class SkirmishError(Exception):
    """Base class for all engine errors."""


class ActionError(SkirmishError):
    """An action was rejected; match state is unchanged."""

    def __init__(self, message: str, unit_id: Optional[str] = None):
        super().__init__(message)
        self.unit_id = unit_id


class OutOfBounds(ActionError):
    pass


class OccupiedCell(ActionError):
    pass


class UnreachableCell(ActionError):
    pass


class AlreadyMoved(ActionError):
    pass


class AlreadyActed(ActionError):
    pass


class OutOfAmmo(ActionError):
    pass


class OutOfRange(ActionError):
    pass


class NotVisible(ActionError):
    pass


class InsufficientCharge(ActionError):
    pass


class InsufficientFunds(ActionError):
    pass


class InvalidTurnState(ActionError):
    """Action attempted outside the acting faction's unit phase."""


class InvalidAction(ActionError):
    """Action is structurally impossible (friendly target, cell not capturable, ...)."""


class ConfigurationError(SkirmishError):
    """Rule tables or scenario data are unusable."""


class UnknownIdentifier(ConfigurationError):
    def __init__(self, kind: str, identifier: str, referenced_by: Optional[str] = None):
        where = f" (referenced by {referenced_by})" if referenced_by else ""
        super().__init__(f"Unknown {kind} identifier '{identifier}'{where}")
        self.kind = kind
        self.identifier = identifier
        self.referenced_by = referenced_by


class SnapshotError(SkirmishError):
    """A saved snapshot is malformed or from an unsupported version."""
