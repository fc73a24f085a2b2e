"""Exceptions raised by the matching engine."""


class ReconciliationError(Exception):
    """Base class for matching engine errors."""


class ConfigurationError(ReconciliationError, ValueError):
    """The run configuration is missing or invalid. Raised before any work starts."""


class InputError(ReconciliationError, ValueError):
    """The items handed to a run are unusable, e.g. two share the same id."""


class ClaimConflictError(ReconciliationError):
    """An item was claimed twice within one run.

    This indicates silent double counting and is always fatal.
    """

    def __init__(self, side: str, item_id: str, holder: str):
        self.side = side
        self.item_id = item_id
        self.holder = holder
        super().__init__(
            f"{side} item {item_id!r} is already claimed by suggestion {holder!r}"
        )
