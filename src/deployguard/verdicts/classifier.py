"""
Rule-based failure classifier.

Maps CloudFormation/CDK failure signals to an error class with a raw
confidence in [0, 1], a stable fingerprint, and the owning service.
Rules are evaluated in order; the most specific patterns come first
(rollback locks before generic in-progress locks).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Iterable, Protocol, Sequence, runtime_checkable

import structlog

from deployguard.verdicts.models import ClassificationResult, ErrorClass, FailureSignal

logger = structlog.get_logger()

UNKNOWN_CONFIDENCE = 0.5

STOPWORDS = frozenset(
    {
        "this", "that", "with", "from", "have", "been", "were", "will", "into",
        "than", "then", "them", "they", "there", "their", "which", "while",
        "when", "what", "where", "does", "here", "only", "also", "some", "such",
        "instead", "cannot", "can't", "should", "would", "could", "about",
    }
)

_WORD_RE = re.compile(r"[A-Za-z0-9_\-']+")
_ARN_RE = re.compile(r"arn:[^\s]+")
_NUMBER_RE = re.compile(r"\d+")


@runtime_checkable
class Classifier(Protocol):
    """Pluggable classifier used by the verdict generator."""

    def classify(self, signals: Sequence[FailureSignal]) -> ClassificationResult:
        ...

    def extract_tokens(self, signals: Sequence[FailureSignal]) -> list[str]:
        ...


@dataclass(frozen=True)
class ClassificationRule:
    error_class: ErrorClass
    service: str
    confidence: float
    patterns: tuple[re.Pattern[str], ...]

    def matches(self, signal: FailureSignal) -> bool:
        text = f"{signal.status_reason} {signal.resource_status or ''}"
        return any(p.search(text) for p in self.patterns)


def _rule(error_class: ErrorClass, service: str, confidence: float, *patterns: str) -> ClassificationRule:
    return ClassificationRule(
        error_class=error_class,
        service=service,
        confidence=confidence,
        patterns=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
    )


DEFAULT_RULES: tuple[ClassificationRule, ...] = (
    _rule(
        ErrorClass.ACM_DNS_VALIDATION_PENDING,
        "ACM",
        0.9,
        r"DNS validation is pending",
        r"Certificate validation is not complete",
    ),
    _rule(
        ErrorClass.ROUTE53_DELEGATION_PENDING,
        "Route53",
        0.9,
        r"NS records not configured",
        r"Delegation is pending",
        r"name servers have not been updated",
    ),
    _rule(
        ErrorClass.CFN_ROLLBACK_LOCK,
        "CloudFormation",
        0.95,
        r"ROLLBACK_IN_PROGRESS",
    ),
    _rule(
        ErrorClass.CFN_IN_PROGRESS_LOCK,
        "CloudFormation",
        0.95,
        r"\b[A-Z_]*IN_PROGRESS\b",
    ),
    _rule(
        ErrorClass.MISSING_SECRET,
        "SecretsManager",
        0.85,
        r"Secrets Manager can(?:'|no)t find",
        r"Secret arn:aws:secretsmanager:\S+ does not exist",
    ),
    _rule(
        ErrorClass.MISSING_ENV_VAR,
        "Configuration",
        0.8,
        r"missing required configuration",
        r"environment variable \S+ is not set",
        r"Required environment variable .* not set",
    ),
    _rule(
        ErrorClass.UNIT_MISMATCH,
        "Configuration",
        0.8,
        r"expected (?:value in )?\w+ but got \w+",
    ),
    _rule(
        ErrorClass.DEPRECATED_CDK_API,
        "CDK",
        0.75,
        r"\[DEPRECATED\]",
        r"\bdeprecated\b",
    ),
)


def _normalize_reason(reason: str) -> str:
    reason = _ARN_RE.sub("<arn>", reason)
    reason = _NUMBER_RE.sub("#", reason)
    return " ".join(reason.lower().split())


def compute_fingerprint(error_class: str, signals: Iterable[FailureSignal]) -> str:
    """Stable id for a failure signature. Ignores logical ids and timestamps."""
    parts = [error_class]
    for signal in signals:
        parts.append(f"{signal.resource_type}|{_normalize_reason(signal.status_reason)}")
    return hashlib.sha256("\n".join(parts).encode("utf-8")).hexdigest()[:16]


class RuleBasedClassifier:
    """Default classifier backed by an ordered tuple of regex rules."""

    def __init__(self, rules: Sequence[ClassificationRule] = DEFAULT_RULES) -> None:
        self._rules = tuple(rules)

    def classify(self, signals: Sequence[FailureSignal]) -> ClassificationResult:
        if not signals:
            return ClassificationResult(
                error_class=ErrorClass.UNKNOWN,
                confidence=0.0,
                fingerprint=compute_fingerprint(ErrorClass.UNKNOWN, ()),
                service="Unknown",
                tokens=(),
            )

        # (rule, signal) of the highest-confidence match; ties keep the earliest
        best: tuple[ClassificationRule, FailureSignal] | None = None
        for signal in signals:
            for rule in self._rules:
                if rule.matches(signal):
                    if best is None or rule.confidence > best[0].confidence:
                        best = (rule, signal)
                    break

        tokens = tuple(self.extract_tokens(signals))

        if best is None:
            logger.debug("signals_unclassified", signal_count=len(signals))
            return ClassificationResult(
                error_class=ErrorClass.UNKNOWN,
                confidence=UNKNOWN_CONFIDENCE,
                fingerprint=compute_fingerprint(ErrorClass.UNKNOWN, signals),
                service=_service_from_resource_type(signals[0].resource_type),
                tokens=tokens,
            )

        rule, signal = best
        return ClassificationResult(
            error_class=rule.error_class,
            confidence=rule.confidence,
            fingerprint=compute_fingerprint(rule.error_class, [signal]),
            service=rule.service,
            tokens=_dedupe((rule.service, *tokens)),
        )

    def extract_tokens(self, signals: Sequence[FailureSignal]) -> list[str]:
        """Tokens in signal order, first occurrence wins.

        Each signal contributes its resource type followed by the words of
        its status reason longer than three characters, minus stopwords.
        """
        tokens: list[str] = []
        for signal in signals:
            if signal.resource_type:
                tokens.append(signal.resource_type)
            for word in _WORD_RE.findall(signal.status_reason):
                word = word.strip("-'")
                if len(word) <= 3 or word.lower() in STOPWORDS:
                    continue
                tokens.append(word)
        return list(_dedupe(tokens))


def _dedupe(items: Iterable[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return tuple(out)


def _service_from_resource_type(resource_type: str) -> str:
    # AWS::Lambda::Function -> Lambda
    parts = resource_type.split("::")
    if len(parts) >= 2 and parts[1]:
        return parts[1]
    return "Unknown"
