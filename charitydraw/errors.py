"""Exception taxonomy shared by the billing and settlement components."""

from __future__ import annotations

from typing import Any, Optional


class CharityDrawError(Exception):
    """Base class for errors raised by :mod:`charitydraw`."""


class ConfigurationError(CharityDrawError):
    """Required configuration (e.g. billing credentials) is missing or rejected.

    Fatal: callers should surface it rather than retry.
    """


class NotFound(CharityDrawError):
    """No subscriber, draw, or winner record exists for the supplied id."""

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} does not exist")


class InvalidStateTransition(CharityDrawError):
    """An illegal state change was attempted; nothing was mutated.

    Attributes
    ----------
    entity : str
        Name of the record type, e.g. ``"WinnerRecord"``.
    entity_id : Any
        Primary key of the record.
    current : str
        State the record was in when the transition was rejected.
    action : str
        Transition that was attempted (``"verify"``, ``"settle"``, ...).
    """

    TERMINAL_STATES = frozenset({"rejected", "settled", "published"})

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        *,
        current: str,
        action: str,
        detail: Optional[str] = None,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.action = action
        message = f"Cannot {action} {entity} {entity_id!r} in state '{current}'"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def already_processed(self) -> bool:
        """``True`` when the record has already moved past the attempted step.

        Lets the admin UI show "already processed" instead of a generic error.
        """
        if self.current in self.TERMINAL_STATES:
            return True
        return self.action == "verify" and self.current == "verified"


class SyncUnavailable(CharityDrawError):
    """The external billing system could not be reached or timed out.

    Never to be interpreted as a subscription status.
    """


class PersistenceConflict(CharityDrawError):
    """A concurrent write kept winning after the bounded number of retries."""

    def __init__(self, message: str, *, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(message)


__all__ = [
    "CharityDrawError",
    "ConfigurationError",
    "InvalidStateTransition",
    "NotFound",
    "PersistenceConflict",
    "SyncUnavailable",
]
