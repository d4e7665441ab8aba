"""Confidence scoring and notification readiness."""

from dataclasses import dataclass
from typing import Optional

from core.config import RecognitionConfig
from core.models import Pattern
from recognition.similarity import payload_similarity


@dataclass
class ScoredPattern:
    """Confidence result for one pattern."""
    pattern: Pattern
    consistency: float
    confidence: float
    ready_for_notification: bool


class ConfidenceEngine:
    """
    Turns occurrence count and cross-pattern consistency into confidence.

    confidence = min(100, occurrences * consistency * 100 / saturation)

    Consistency is the mean summed similarity of same-type peers at or
    above the similarity threshold, or 1.0 when no peer qualifies.
    """

    def __init__(self, config: Optional[RecognitionConfig] = None):
        self.config = config or RecognitionConfig()

    def compute_confidence(self, occurrence_count: int, consistency: float) -> float:
        raw = occurrence_count * consistency * 100 / self.config.saturation_occurrences
        return round(min(100.0, max(0.0, raw)), 2)

    def ready_for_notification(self, occurrence_count: int, confidence: float) -> bool:
        return (
            occurrence_count >= self.config.notify_min_occurrences
            and confidence > self.config.notify_min_confidence
        )

    def consistency(self, pattern: Pattern, peers: list[Pattern]) -> float:
        """Mean accumulated similarity over qualifying same-type peers."""
        threshold = self.config.similarity_threshold
        total = 0.0
        matched = 0
        for other in peers:
            if other.id == pattern.id or other.type != pattern.type:
                continue
            similarity = payload_similarity(pattern.payload, other.payload)
            if similarity >= threshold:
                total += similarity
                matched += 1
        return total / matched if matched else 1.0

    def score(self, patterns: list[Pattern]) -> list[ScoredPattern]:
        """Score one same-type partition (dismissed patterns are skipped)."""
        active = [p for p in patterns if not p.dismissed]
        results = []
        for pattern in active:
            consistency = self.consistency(pattern, active)
            confidence = self.compute_confidence(pattern.occurrence_count, consistency)
            results.append(ScoredPattern(
                pattern=pattern,
                consistency=consistency,
                confidence=confidence,
                ready_for_notification=self.ready_for_notification(
                    pattern.occurrence_count, confidence
                ),
            ))
        return results
