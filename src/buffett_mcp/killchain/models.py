"""Value objects for the kill chain: fundamentals, step analyses, outcomes, memos."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

STEP_COUNT = 4
SUMMARY_STEP = STEP_COUNT + 1

STEP_TITLES: dict[int, str] = {
    1: "Do I understand the business?",
    2: "Does it have a durable moat?",
    3: "Is management trustworthy and capable?",
    4: "Is the price sensible?",
}

VERDICT_PASS = "STRONG BUY CANDIDATE"
VERDICT_FAIL = "DOES NOT PASS"

MOAT_TYPES = (
    "Brand",
    "Network Effects",
    "Switching Costs",
    "Cost Advantage",
    "Efficient Scale",
    "Intangible Assets",
    "None",
)

MANAGEMENT_NOTE = (
    "Management assessment is based on limited public financial data. "
    "Read shareholder letters, proxy statements and earnings calls before relying on it."
)


# ============================================================================
# FUNDAMENTALS
# ============================================================================


@dataclass(frozen=True)
class FundamentalsRecord:
    """Normalized per-ticker fundamentals. Immutable for the duration of a run."""

    ticker: str
    company_name: str
    currency: str = "USD"
    current_price: float | None = None
    pe_ratio: float | None = None
    forward_pe: float | None = None
    market_cap: float | None = None
    fifty_two_week_low: float | None = None
    fifty_two_week_high: float | None = None
    revenue: float | None = None
    net_income: float | None = None
    profit_margin: float | None = None
    roic: float | None = None
    roic_note: str | None = None
    business_summary: str | None = None
    website: str | None = None

    def __post_init__(self) -> None:
        ticker = (self.ticker or "").upper().strip()
        if not ticker:
            raise ValueError("ticker must be non-empty")
        object.__setattr__(self, "ticker", ticker)
        if not self.company_name:
            object.__setattr__(self, "company_name", ticker)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FundamentalsRecord:
        """Rebuild from ``to_dict`` output, ignoring unknown keys and NaN."""
        known = {f for f in cls.__dataclass_fields__}
        clean: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known:
                continue
            if isinstance(value, float) and math.isnan(value):
                value = None
            clean[key] = value
        return cls(**clean)


# ============================================================================
# STEP ANALYSES
# ============================================================================


class _StepAnalysisModel(BaseModel):
    """Base for the four analysis shapes. JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    step: ClassVar[int]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


def _lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


class BusinessAnalysis(_StepAnalysisModel):
    """Step 1: can the business be explained simply?"""

    step: ClassVar[int] = 1

    characteristics: list[str] = Field(min_length=1)
    summary: str
    verdict: Literal["simple", "complex"]

    @field_validator("characteristics", mode="before")
    @classmethod
    def clean_tags(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        tags: list[str] = []
        for tag in value:
            if not isinstance(tag, str):
                return value  # let type validation reject it
            tag = tag.strip()
            if tag and tag not in tags:
                tags.append(tag)
        return tags

    @field_validator("verdict", mode="before")
    @classmethod
    def normalize_verdict(cls, value: Any) -> Any:
        return _lower(value)


class MoatAnalysis(_StepAnalysisModel):
    """Step 2: durable competitive advantage."""

    step: ClassVar[int] = 2

    moat_type: str = Field(min_length=1)
    moat_rating: Literal["strong", "moderate", "weak"]
    evidence: str
    threats: str

    @field_validator("moat_type", mode="before")
    @classmethod
    def match_moat_label(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        value = value.strip()
        for label in MOAT_TYPES:
            if value.lower() == label.lower():
                return label
        return value

    @field_validator("moat_rating", mode="before")
    @classmethod
    def normalize_rating(cls, value: Any) -> Any:
        return _lower(value)


class ManagementAnalysis(_StepAnalysisModel):
    """Step 3: management quality, graded A-F."""

    step: ClassVar[int] = 3

    grade: Literal["A", "B", "C", "D", "F"]
    summary: str
    concerns: str
    note: str = MANAGEMENT_NOTE

    @field_validator("grade", mode="before")
    @classmethod
    def normalize_grade(cls, value: Any) -> Any:
        # "B+" -> "B"
        if isinstance(value, str) and value.strip():
            return value.strip().upper()[0]
        return value

    @field_validator("note", mode="before")
    @classmethod
    def fixed_note(cls, value: Any) -> str:
        return MANAGEMENT_NOTE


class ValuationAnalysis(_StepAnalysisModel):
    """Step 4: is the current price sensible?"""

    step: ClassVar[int] = 4

    verdict: Literal["undervalued", "fairly valued", "overvalued"]
    reasoning: str
    margin_of_safety: Literal["high", "moderate", "low", "none"]
    key_metric: str

    @field_validator("verdict", mode="before")
    @classmethod
    def normalize_verdict(cls, value: Any) -> Any:
        if isinstance(value, str):
            return " ".join(value.strip().lower().replace("_", " ").split())
        return value

    @field_validator("margin_of_safety", mode="before")
    @classmethod
    def normalize_margin(cls, value: Any) -> Any:
        return _lower(value)


StepAnalysis = Union[BusinessAnalysis, MoatAnalysis, ManagementAnalysis, ValuationAnalysis]

ANALYSIS_MODELS: dict[int, type[_StepAnalysisModel]] = {
    model.step: model
    for model in (BusinessAnalysis, MoatAnalysis, ManagementAnalysis, ValuationAnalysis)
}


def analysis_model_for(step: int) -> type[_StepAnalysisModel]:
    """Return the analysis shape for a step number."""
    try:
        return ANALYSIS_MODELS[step]
    except KeyError:
        raise ValueError(f"Invalid step {step}. Must be one of: {sorted(ANALYSIS_MODELS)}") from None


# ============================================================================
# OUTCOMES AND MEMOS
# ============================================================================


@dataclass(frozen=True)
class StepOutcome:
    """
    User decision for one step.

    ``passed`` is tri-state: True (pass), False (fail), None (unsure).
    """

    passed: bool | None
    notes: str = ""

    @property
    def label(self) -> str:
        if self.passed is None:
            return "unsure"
        return "pass" if self.passed else "fail"

    @classmethod
    def from_label(cls, label: str, notes: str = "") -> StepOutcome:
        """Build from "pass" / "fail" / "unsure"."""
        mapping: dict[str, bool | None] = {"pass": True, "fail": False, "unsure": None}
        key = label.lower().strip()
        if key not in mapping:
            raise ValueError(f"Invalid decision '{label}'. Must be one of: {sorted(mapping)}")
        return cls(passed=mapping[key], notes=notes)

    def to_dict(self) -> dict[str, Any]:
        return {"passed": self.passed, "decision": self.label, "notes": self.notes}


@dataclass(frozen=True)
class MemoStep:
    step: int
    outcome: StepOutcome
    analysis: StepAnalysis | None


@dataclass(frozen=True)
class Memo:
    """Persistable record of one completed kill-chain run."""

    ticker: str
    company_name: str
    steps: tuple[MemoStep, ...]
    overall_verdict: str
    fundamentals: FundamentalsRecord
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    memo_id: str | None = None

    def to_record(self) -> dict[str, Any]:
        """Flat record with one column group per step."""
        record: dict[str, Any] = {
            "id": self.memo_id,
            "ticker": self.ticker,
            "company_name": self.company_name,
        }
        for memo_step in self.steps:
            prefix = f"step{memo_step.step}"
            record[f"{prefix}_passed"] = memo_step.outcome.passed
            record[f"{prefix}_notes"] = memo_step.outcome.notes
            record[f"{prefix}_analysis"] = (
                memo_step.analysis.to_dict() if memo_step.analysis is not None else None
            )
        record["overall_verdict"] = self.overall_verdict
        record["stock_data"] = self.fundamentals.to_dict()
        record["created_at"] = self.created_at.isoformat()
        return record
