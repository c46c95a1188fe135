"""Score normalisation and candidate validation.

The score-to-level mapping is defined once here and used by both the
scoring engine (when a RiskScore is written) and the lifecycle manager
(when an item's level is derived from its latest scores).

    low       [0, 25)
    medium    [25, 50)
    high      [50, 75)
    critical  [75, 100]
"""

import math
from collections.abc import Iterable

import structlog

from .config import ScoringConfig, default_config
from .errors import ValidationFailed
from .models import AcceptedCandidate, AnalysisCandidate, RejectedCandidate, RiskLevel

logger = structlog.get_logger()


def normalize_score(raw_score: float, config: ScoringConfig = default_config.scoring) -> int:
    """Clamp ``raw_score`` to the score range and round half up to an integer."""
    if isinstance(raw_score, bool) or not isinstance(raw_score, int | float):
        raise ValidationFailed("Risk score must be numeric", raw_score=repr(raw_score))
    if math.isnan(raw_score):
        raise ValidationFailed("Risk score must be a number", raw_score="nan")

    clamped = min(float(config.max_score), max(float(config.min_score), float(raw_score)))
    return math.floor(clamped + 0.5)


def level_for_score(score: int, config: ScoringConfig = default_config.scoring) -> RiskLevel:
    if score >= config.critical_threshold:
        return RiskLevel.CRITICAL
    if score >= config.high_threshold:
        return RiskLevel.HIGH
    if score >= config.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def normalize_category(category: str, config: ScoringConfig = default_config.scoring) -> str:
    cleaned = (category or "").strip()
    if not cleaned:
        raise ValidationFailed("Risk category must not be empty")
    return cleaned[: config.max_category_length]


def validate_confidence(confidence: float | None) -> float | None:
    if confidence is None:
        return None
    if isinstance(confidence, bool) or not isinstance(confidence, int | float):
        raise ValidationFailed("Confidence must be numeric", confidence=repr(confidence))
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        raise ValidationFailed("Confidence must be within [0, 1]", confidence=confidence)
    return float(confidence)


def validate_candidate(
    candidate: AnalysisCandidate,
    config: ScoringConfig = default_config.scoring,
) -> AcceptedCandidate:
    """Validate and normalise one analysis candidate.

    Raises:
        ValidationFailed: missing or out-of-range confidence, empty category,
            or a non-numeric score.
    """
    if candidate.confidence is None:
        raise ValidationFailed("Confidence is required for analysis candidates")
    confidence = validate_confidence(candidate.confidence)
    category = normalize_category(candidate.category, config)
    score = normalize_score(candidate.raw_score, config)
    return AcceptedCandidate(
        category=category,
        risk_score=score,
        risk_level=level_for_score(score, config),
        confidence=confidence,
        reasoning=candidate.reasoning,
    )


def partition_candidates(
    candidates: Iterable[AnalysisCandidate],
    config: ScoringConfig = default_config.scoring,
    **log_context: object,
) -> tuple[list[AcceptedCandidate], list[RejectedCandidate]]:
    """Split candidates into accepted and rejected.

    A rejected candidate is a data-quality failure: it is logged and dropped,
    the rest of the batch carries on.
    """
    accepted: list[AcceptedCandidate] = []
    rejected: list[RejectedCandidate] = []
    for candidate in candidates:
        try:
            accepted.append(validate_candidate(candidate, config))
        except ValidationFailed as exc:
            label = (
                candidate.category[: config.max_category_length]
                if candidate.category is not None
                else None
            )
            logger.warning(
                "analysis_candidate_rejected",
                category=label,
                raw_score=candidate.raw_score,
                confidence=candidate.confidence,
                reason=exc.message,
                **log_context,
            )
            rejected.append(
                RejectedCandidate(
                    category=label,
                    raw_score=candidate.raw_score,
                    confidence=candidate.confidence,
                    reason=exc.message,
                )
            )
    return accepted, rejected


def highest_level(levels: Iterable[RiskLevel]) -> RiskLevel | None:
    """Most severe level in ``levels`` (critical > high > medium > low)."""
    return max(levels, key=lambda level: level.rank, default=None)
