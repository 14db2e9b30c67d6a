# src/goalcoach/core/errors.py

"""
Error taxonomy shared by the core and the adapters.

Every failure surfaced to a caller derives from PlannerError, so a connector
can catch one base class and still keep the process alive.
"""

from __future__ import annotations


class PlannerError(Exception):
    """Base class for all goalcoach errors."""


class ValidationError(PlannerError):
    """Bad local input (empty text, unknown priority, ...). Raised before any I/O."""


class PreconditionError(PlannerError):
    """Operation is not allowed in the current view or workflow state."""


class StoreError(PlannerError):
    """Remote document store failure."""


class StoreWriteError(StoreError):
    """A single add/update/delete failed."""


class StoreBatchError(StoreError):
    """An atomic batch failed; nothing from the batch was applied."""


class SuggestionServiceError(PlannerError):
    """The suggestion provider failed or returned an unusable payload."""


class SingleFlightError(PlannerError):
    """A suggestion request is already outstanding."""
