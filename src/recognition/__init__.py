"""Pattern recognition: similarity, confidence, detection and sweeps."""

from .similarity import levenshtein_distance, navigation_similarity, form_similarity
from .confidence import ConfidenceEngine, ScoredPattern
from .iteration import extract_iteration, template_summary
from .detector import MidWorkflowDetector, Suggestion
from .notifications import NotificationCenter
from .summarizer import IntentSummarizer
from .scheduler import PatternRecognitionScheduler, SweepResult
from .tracker import PatternTracker

__all__ = [
    "levenshtein_distance",
    "navigation_similarity",
    "form_similarity",
    "ConfidenceEngine",
    "ScoredPattern",
    "extract_iteration",
    "template_summary",
    "MidWorkflowDetector",
    "Suggestion",
    "NotificationCenter",
    "IntentSummarizer",
    "PatternRecognitionScheduler",
    "SweepResult",
    "PatternTracker",
]
