"""
Triage policy: decides what happens to an analysed signal.

Pure function of (confidence, source reliability, rules): no I/O, no clock,
no hidden state.

  APPROVE  confidence ≥ confidence_threshold AND reliability ≥ reliability_threshold
  ARCHIVE  otherwise, if confidence < archive_below
  REVIEW   everything else (→ flagged for an operator)
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from newsdesk.models.models import SignalStatus


class ApprovalRules(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = True
    confidence_threshold: int = Field(default=75, ge=0, le=100)
    reliability_threshold: int = Field(default=70, ge=0, le=100)
    archive_below: int | None = Field(default=20, ge=0, le=100)


class PublishingRules(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool = True
    min_article_age_minutes: int = Field(default=0, ge=0)
    require_approved_signal: bool = True
    deliver_webhook: bool = True


class TriageDecision(str, enum.Enum):
    APPROVE = "approve"
    ARCHIVE = "archive"
    REVIEW = "review"

    @property
    def target_status(self) -> SignalStatus:
        return _TARGET_STATUS[self]


_TARGET_STATUS = {
    TriageDecision.APPROVE: SignalStatus.APPROVED,
    TriageDecision.ARCHIVE: SignalStatus.ARCHIVED,
    TriageDecision.REVIEW: SignalStatus.FLAGGED,
}


def triage_signal(
    confidence_score: float,
    reliability_score: float,
    rules: ApprovalRules | None = None,
) -> TriageDecision:
    rules = rules or ApprovalRules()
    if not rules.enabled:
        return TriageDecision.REVIEW
    if (
        confidence_score >= rules.confidence_threshold
        and reliability_score >= rules.reliability_threshold
    ):
        return TriageDecision.APPROVE
    if rules.archive_below is not None and confidence_score < rules.archive_below:
        return TriageDecision.ARCHIVE
    return TriageDecision.REVIEW
