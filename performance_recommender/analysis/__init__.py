"""Analysis module for exercise performance and rule evaluation."""

from .anomaly import AnomalyInterpretation, AnomalyResult, AnomalyScorer
from .performance import AnalysisSnapshot, DetectedPattern, PatternType, PerformanceAnalysisEngine
from .rules import DEFAULT_RULES, RecommendationDraft, Rule, RuleEngine, evaluate_rules, max_priority
from .trend import PerformanceSample, TrendAnalyzer, TrendClassification, TrendResult

__all__ = [
    "AnomalyInterpretation",
    "AnomalyResult",
    "AnomalyScorer",
    "AnalysisSnapshot",
    "DetectedPattern",
    "PatternType",
    "PerformanceAnalysisEngine",
    "DEFAULT_RULES",
    "RecommendationDraft",
    "Rule",
    "RuleEngine",
    "evaluate_rules",
    "max_priority",
    "PerformanceSample",
    "TrendAnalyzer",
    "TrendClassification",
    "TrendResult",
]
