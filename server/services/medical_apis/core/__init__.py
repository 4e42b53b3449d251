# =============================================================================
# services/medical_apis/core/__init__.py
# =============================================================================

"""
Shared aggregation machinery: client base class, rate limiting, records,
term extraction, confidence scoring and the fan-out aggregator
"""

from .aggregator import AnalysisResult, MedicalAggregator, SearchOutcome, validate_profile
from .base_client import BaseMedicalAPIClient
from .confidence import ConfidenceScorer
from .extraction import TermExtractor
from .profile import UserProfile
from .rate_limiter import RateLimiter
from .records import (
    RecordCategory,
    UpstreamRecord,
    MedicationRecord,
    ConditionRecord,
    TrialRecord,
    HealthTopicRecord,
    AdverseEventRecord,
    DrugLabelRecord,
    GuidanceRecord
)

__all__ = [
    "AnalysisResult",
    "MedicalAggregator",
    "SearchOutcome",
    "validate_profile",
    "BaseMedicalAPIClient",
    "ConfidenceScorer",
    "TermExtractor",
    "UserProfile",
    "RateLimiter",
    "RecordCategory",
    "UpstreamRecord",
    "MedicationRecord",
    "ConditionRecord",
    "TrialRecord",
    "HealthTopicRecord",
    "AdverseEventRecord",
    "DrugLabelRecord",
    "GuidanceRecord"
]
