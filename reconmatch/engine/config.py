"""Run configuration for the matching engine.

Every threshold the engine uses lives here, grouped the same way the
settings file is laid out::

    {
        "auto_approve_threshold": 95,
        "amount_tolerance": {"small_amount_percent": "0.05", ...},
        "date_thresholds": {"good_match_days": 3, ...},
        "text_similarity": {"algorithm": "advanced", "threshold": 0.7, ...},
        "grouping": {"max_group_size": 5, ...},
        "performance": {"timeout_seconds": 90, ...},
        "heuristics": {"fees_keywords": ["frais", ...], ...}
    }

A config is supplied once per run and never changes during it.
"""

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from reconmatch.engine.errors import ConfigurationError
from reconmatch.engine.similarity import SimilarityAlgorithm

logger = logging.getLogger(__name__)


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AmountTolerance(_Section):
    """Amount-scaled tolerance curve."""
    small_amount_percent: Decimal = Field(default=Decimal("0.05"), ge=0, le=1)
    large_amount_percent: Decimal = Field(default=Decimal("0.01"), ge=0, le=1)
    minimum_absolute: Decimal = Field(default=Decimal("500"), ge=0)
    maximum_absolute: Decimal = Field(default=Decimal("10000"), ge=0)
    large_amount_threshold: Decimal = Field(default=Decimal("1000000"), gt=0)


class DateThresholds(_Section):
    """Day counts for the date proximity tiers."""
    good_match_days: int = Field(default=3, ge=0)
    fair_match_days: int = Field(default=7, ge=0)
    low_match_days: int = Field(default=15, ge=0)

    @model_validator(mode="after")
    def check_tier_order(self) -> "DateThresholds":
        if not self.good_match_days <= self.fair_match_days <= self.low_match_days:
            raise ValueError(
                "date_thresholds must satisfy good_match_days <= fair_match_days <= low_match_days"
            )
        return self


class TextSimilarityConfig(_Section):
    algorithm: SimilarityAlgorithm = SimilarityAlgorithm.ADVANCED
    threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    weight: int = Field(default=5, ge=0)
    normalize: bool = True

    @field_validator("algorithm", mode="before")
    @classmethod
    def lower_case_algorithm(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value


class GroupingConfig(_Section):
    """Many-to-one and one-to-many matching."""
    enabled: bool = True
    min_group_size: int = Field(default=2, ge=2)
    max_group_size: int = Field(default=5, ge=2)
    max_date_range_days: int = Field(default=7, ge=0)
    confidence_score: Decimal = Field(default=Decimal("75"), ge=0, le=100)
    min_share_of_target: Decimal = Field(default=Decimal("0.1"), ge=0, le=1)

    @model_validator(mode="after")
    def check_group_sizes(self) -> "GroupingConfig":
        if self.max_group_size < self.min_group_size:
            raise ValueError("grouping.max_group_size must be >= grouping.min_group_size")
        return self


class PerformanceConfig(_Section):
    timeout_seconds: float = Field(default=90.0, gt=0)
    max_items_per_phase: int = Field(default=200, ge=1)
    max_candidates_for_grouping: int = Field(default=30, ge=2)
    max_subset_sum_states: int = Field(default=5000, ge=1)
    max_subset_sum_pool: int = Field(default=50, ge=1)
    high_performance_mode: bool = False


class ResidualHeuristics(_Section):
    """Keywords searched in lower-cased descriptions of leftover items."""
    transfer_keywords: Tuple[str, ...] = ("virement", "vir ", "transfer")
    fees_keywords: Tuple[str, ...] = ("frais", "commission", "fees")
    interest_keywords: Tuple[str, ...] = ("intérêt", "interet", "interest")
    agios_keywords: Tuple[str, ...] = ("agios", "interet debiteur", "overdraft")
    direct_debit_keywords: Tuple[str, ...] = ("prelevement", "prélèvement", "prel ", "direct debit")
    cheque_keywords: Tuple[str, ...] = ("chq", "cheque", "chèque", "check")

    @field_validator("*", mode="after")
    @classmethod
    def lower_case_keywords(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(keyword.lower() for keyword in value)


class RunConfig(_Section):
    """Complete, immutable configuration of one matching run."""
    auto_approve_threshold: Decimal = Field(default=Decimal("95"), ge=0, le=100)
    exact_match_score: Decimal = Decimal("100")
    probable_match_score: Decimal = Decimal("90")
    ml_min_confidence: Decimal = Field(default=Decimal("85"), ge=0, le=100)
    amount_tolerance: AmountTolerance = Field(default_factory=AmountTolerance)
    date_thresholds: DateThresholds = Field(default_factory=DateThresholds)
    text_similarity: TextSimilarityConfig = Field(default_factory=TextSimilarityConfig)
    grouping: GroupingConfig = Field(default_factory=GroupingConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    heuristics: ResidualHeuristics = Field(default_factory=ResidualHeuristics)

    @model_validator(mode="after")
    def check_phase_scores(self) -> "RunConfig":
        if self.probable_match_score > self.exact_match_score:
            raise ValueError("probable_match_score must not exceed exact_match_score")
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunConfig":
        """
        Build a config from nested mappings, starting from the defaults.

        Raises:
            ConfigurationError: Listing every unknown key, wrong type or
                out-of-range value found.
        """
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(_describe(e)) from e

    @classmethod
    def from_file(cls, path: str | Path) -> "RunConfig":
        """Load a JSON configuration file."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e
        logger.info("Loaded configuration from %s", path)
        return cls.from_dict(data)

    def with_overrides(self, **changes: Any) -> "RunConfig":
        """
        Return a validated copy with some values replaced.

        A section name takes a mapping of the keys to replace in that
        section; a top-level name takes the new value.
        """
        data = self.model_dump()
        for name, value in changes.items():
            if isinstance(data.get(name), dict) and isinstance(value, Mapping):
                data[name] = {**data[name], **value}
            else:
                data[name] = value
        return self.from_dict(data)


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "Invalid configuration: " + "; ".join(problems)
