"""
Turn conflict reports plus a policy into one decision per row.

Precedence for a row's strategy:
    explicit per-row tag  >  applyToAll policy  >  recommended resolution

Under applyToAll the id axis wins: a row with an id conflict always takes
duplicate_id_strategy, even when its code conflicts too. ``rename`` and
``userDecision`` are accepted strategies that currently skip the row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from catalog_import.config import ImportConfig
from catalog_import.conflicts import ConflictReport, ResolutionStrategy
from catalog_import.errors import ConfigError, issue_definition

logger = logging.getLogger(__name__)

DECISION_OVERWRITE = "overwrite"
DECISION_SKIP = "skip"
DECISION_KEEP_BOTH = "keep_both"

UNIMPLEMENTED_STRATEGIES = {ResolutionStrategy.RENAME, ResolutionStrategy.USER_DECISION}

_TAG_SPELLINGS = {
    "keep-both": ResolutionStrategy.KEEP_BOTH,
    "keepboth": ResolutionStrategy.KEEP_BOTH,
    "user_decision": ResolutionStrategy.USER_DECISION,
    "userdecision": ResolutionStrategy.USER_DECISION,
}


def parse_strategy(value: "str | ResolutionStrategy") -> Optional[ResolutionStrategy]:
    """Return the strategy for a tag, or None when the tag is unknown."""
    if isinstance(value, ResolutionStrategy):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return ResolutionStrategy(text)
    except ValueError:
        return _TAG_SPELLINGS.get(text.lower())


@dataclass
class ResolutionPolicy:
    duplicate_id_strategy: ResolutionStrategy = ResolutionStrategy.OVERWRITE
    duplicate_code_strategy: ResolutionStrategy = ResolutionStrategy.SKIP
    apply_to_all: bool = False

    def __post_init__(self) -> None:
        for name in ("duplicate_id_strategy", "duplicate_code_strategy"):
            raw = getattr(self, name)
            strategy = parse_strategy(raw)
            if strategy is None:
                allowed = [s.value for s in ResolutionStrategy]
                raise ConfigError(f"{name} must be one of {allowed}, got {raw!r}")
            setattr(self, name, strategy)

    @classmethod
    def from_config(cls, config: ImportConfig) -> "ResolutionPolicy":
        return cls(
            duplicate_id_strategy=config.duplicate_id_strategy,
            duplicate_code_strategy=config.duplicate_code_strategy,
            apply_to_all=config.apply_to_all,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "duplicate_id_strategy": self.duplicate_id_strategy.value,
            "duplicate_code_strategy": self.duplicate_code_strategy.value,
            "apply_to_all": self.apply_to_all,
        }


@dataclass
class ResolutionFailure:
    """A row tag that could not be understood. The row is skipped."""

    row_index: int
    tag: str

    @property
    def message(self) -> str:
        return f"Row {self.row_index + 1}: unknown resolution '{self.tag}', row skipped"

    def to_dict(self) -> dict[str, Any]:
        definition = issue_definition("conflict_resolution_failure")
        return {
            "row": self.row_index + 1,
            "tag": self.tag,
            "message": self.message,
            "severity": definition["severity"],
            "category": definition["category"],
        }


@dataclass
class RowDecision:
    report: ConflictReport
    strategy: ResolutionStrategy
    decision: str
    source: str
    reason: Optional[str] = None

    @property
    def row_index(self) -> int:
        return self.report.row_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row_index + 1,
            "strategy": self.strategy.value,
            "decision": self.decision,
            "source": self.source,
            "reason": self.reason,
        }


@dataclass
class ResolutionPlan:
    decisions: list[RowDecision]
    policy: ResolutionPolicy
    failures: list[ResolutionFailure] = field(default_factory=list)

    def count(self, decision: str) -> int:
        return sum(1 for item in self.decisions if item.decision == decision)

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy": self.policy.to_dict(),
            "to_overwrite": self.count(DECISION_OVERWRITE),
            "to_keep_both": self.count(DECISION_KEEP_BOTH),
            "to_skip": self.count(DECISION_SKIP),
            "failures": [failure.to_dict() for failure in self.failures],
        }


def _policy_strategy(report: ConflictReport, policy: ResolutionPolicy) -> tuple[ResolutionStrategy, str]:
    if policy.apply_to_all:
        if report.has_id_conflict:
            return policy.duplicate_id_strategy, "policy"
        if report.has_code_conflict:
            return policy.duplicate_code_strategy, "policy"
    return report.recommended_resolution, "recommended"


def _decision_for(strategy: ResolutionStrategy) -> tuple[str, Optional[str]]:
    if strategy is ResolutionStrategy.OVERWRITE:
        return DECISION_OVERWRITE, None
    if strategy is ResolutionStrategy.KEEP_BOTH:
        return DECISION_KEEP_BOTH, None
    if strategy in UNIMPLEMENTED_STRATEGIES:
        return DECISION_SKIP, f"Skipped: '{strategy.value}' resolution is not implemented yet"
    return DECISION_SKIP, None


def resolve(
    reports: Sequence[ConflictReport],
    policy: Optional[ResolutionPolicy] = None,
    row_tags: Optional[Mapping[int, str]] = None,
) -> ResolutionPlan:
    """
    Decide every row. ``row_tags`` maps 0-based source row index to a
    strategy name; unknown tags skip the row and are listed as failures.
    """
    policy = policy or ResolutionPolicy()
    row_tags = dict(row_tags or {})
    decisions: list[RowDecision] = []
    failures: list[ResolutionFailure] = []

    for report in reports:
        reason: Optional[str] = None
        if report.row_index in row_tags:
            tag = row_tags[report.row_index]
            strategy = parse_strategy(tag)
            if strategy is None:
                failure = ResolutionFailure(report.row_index, str(tag))
                failures.append(failure)
                logger.warning(failure.message)
                decisions.append(
                    RowDecision(report, ResolutionStrategy.SKIP, DECISION_SKIP, "row_tag", failure.message)
                )
                continue
            source = "row_tag"
        else:
            strategy, source = _policy_strategy(report, policy)

        decision, reason = _decision_for(strategy)
        decisions.append(RowDecision(report, strategy, decision, source, reason))
        logger.debug("Row %d: %s -> %s (%s)", report.row_index + 1, strategy.value, decision, source)

    plan = ResolutionPlan(decisions, policy, failures)
    logger.info(
        "Resolution: %d overwrite, %d keep-both, %d skip",
        plan.count(DECISION_OVERWRITE),
        plan.count(DECISION_KEEP_BOTH),
        plan.count(DECISION_SKIP),
    )
    return plan
