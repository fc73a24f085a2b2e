"""Contextual amount tolerance."""

from decimal import Decimal
from enum import Enum

from reconmatch.engine.config import AmountTolerance


class AmountMatch(Enum):
    EXACT = "exact"
    CLOSE = "close"
    MISMATCH = "mismatch"


class AmountComparator:
    """
    Compare two non-negative magnitudes with an amount-scaled tolerance.

    Large amounts get a smaller percentage capped by an absolute maximum;
    small amounts get a larger percentage with an absolute floor.
    """

    def __init__(self, tolerance: AmountTolerance | None = None):
        self.config = tolerance or AmountTolerance()

    def tolerance(self, reference: Decimal) -> Decimal:
        """Return the accepted absolute difference around ``reference``."""
        cfg = self.config
        if reference >= cfg.large_amount_threshold:
            return min(reference * cfg.large_amount_percent, cfg.maximum_absolute)
        return max(reference * cfg.small_amount_percent, cfg.minimum_absolute)

    def compare(self, reference: Decimal, candidate: Decimal) -> AmountMatch:
        if reference == candidate:
            return AmountMatch.EXACT
        if abs(reference - candidate) <= self.tolerance(reference):
            return AmountMatch.CLOSE
        return AmountMatch.MISMATCH

    def is_close(self, reference: Decimal, candidate: Decimal) -> bool:
        """True for exact or within-tolerance amounts."""
        return self.compare(reference, candidate) != AmountMatch.MISMATCH
