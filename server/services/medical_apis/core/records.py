# =============================================================================
# services/medical_apis/core/records.py
# =============================================================================

"""
Normalized record variants produced by the upstream clients

Every parser returns one of these frozen dataclasses, so the aggregator only
ever routes on ``category`` and dedupes on ``key``; it never looks at raw
upstream payloads.
"""

import html
import re
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import ClassVar, Dict, Optional, Tuple


class RecordCategory(str, Enum):
    MEDICATIONS = "medications"
    CONDITIONS = "conditions"
    CLINICAL_TRIALS = "clinical_trials"
    HEALTH_INFORMATION = "health_information"
    DRUG_SAFETY = "drug_safety"
    HEALTH_GUIDANCE = "health_guidance"


@dataclass(frozen=True)
class UpstreamRecord:
    key: str
    label: str
    source: str
    fallback: bool = False

    category: ClassVar[RecordCategory]
    kind: ClassVar[str] = "record"

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["kind"] = self.kind
        data["category"] = self.category.value
        return data


@dataclass(frozen=True)
class MedicationRecord(UpstreamRecord):
    rxcui: Optional[str] = None
    term_type: Optional[str] = None
    synonym: Optional[str] = None
    code: Optional[str] = None
    system: Optional[str] = None
    form: Optional[str] = None
    status: Optional[str] = None

    category: ClassVar[RecordCategory] = RecordCategory.MEDICATIONS
    kind: ClassVar[str] = "medication"


@dataclass(frozen=True)
class ConditionRecord(UpstreamRecord):
    code: Optional[str] = None
    system: Optional[str] = None
    category_name: Optional[str] = None
    clinical_status: str = "unknown"
    verification_status: str = "unknown"
    severity: Optional[str] = None
    onset: Optional[str] = None

    category: ClassVar[RecordCategory] = RecordCategory.CONDITIONS
    kind: ClassVar[str] = "condition"


@dataclass(frozen=True)
class TrialRecord(UpstreamRecord):
    status: str = "Status unknown"
    phase: str = "Phase not specified"
    enrollment: Optional[int] = None
    study_type: Optional[str] = None
    start_date: Optional[str] = None
    condition: Optional[str] = None

    category: ClassVar[RecordCategory] = RecordCategory.CLINICAL_TRIALS
    kind: ClassVar[str] = "clinical_trial"


@dataclass(frozen=True)
class HealthTopicRecord(UpstreamRecord):
    summary: str = ""
    url: Optional[str] = None
    last_revised: Optional[str] = None

    category: ClassVar[RecordCategory] = RecordCategory.HEALTH_INFORMATION
    kind: ClassVar[str] = "health_topic"


@dataclass(frozen=True)
class AdverseEventRecord(UpstreamRecord):
    report_count: int = 0
    frequency: str = "Rare"

    category: ClassVar[RecordCategory] = RecordCategory.DRUG_SAFETY
    kind: ClassVar[str] = "adverse_event"


@dataclass(frozen=True)
class DrugLabelRecord(UpstreamRecord):
    generic_name: Optional[str] = None
    warnings: Optional[str] = None
    contraindications: Optional[str] = None
    dosage: Optional[str] = None
    adverse_reactions: Optional[str] = None

    category: ClassVar[RecordCategory] = RecordCategory.DRUG_SAFETY
    kind: ClassVar[str] = "drug_label"


@dataclass(frozen=True)
class GuidanceRecord(UpstreamRecord):
    summary: str = ""
    url: Optional[str] = None
    item_type: str = "topic"
    categories: Tuple[str, ...] = field(default_factory=tuple)

    category: ClassVar[RecordCategory] = RecordCategory.HEALTH_GUIDANCE
    kind: ClassVar[str] = "guidance"


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    """Clip long upstream text for display, marking the cut with an ellipsis"""
    if text is None:
        return None
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


TAG_PATTERN = re.compile(r"<[^>]*>")


def clean_markup(text: Optional[str]) -> str:
    """Strip tags (including entity-escaped ones) and normalize whitespace"""
    if not text:
        return ""
    text = html.unescape(TAG_PATTERN.sub("", text))
    text = TAG_PATTERN.sub("", text)
    return re.sub(r"\s+", " ", text).strip()
