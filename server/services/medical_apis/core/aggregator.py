# =============================================================================
# services/medical_apis/core/aggregator.py
# =============================================================================

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import pydantic

from core.exceptions import ConfigurationError, ValidationError
from services.cache import CacheManager
from .base_client import BaseMedicalAPIClient
from .confidence import ConfidenceScorer
from .extraction import TermExtractor
from .profile import UserProfile
from .records import RecordCategory, UpstreamRecord

logger = logging.getLogger(__name__)

ProfileInput = Union[UserProfile, Mapping[str, Any], None]

# Which upstreams back each coverage area in the status report
COVERAGE_AREAS = {
    "drug_database": ("rxnorm", "fhir"),
    "condition_database": ("fhir", "medlineplus"),
    "safety_database": ("openfda",),
    "clinical_trials": ("clinical_trials",),
    "health_education": ("medlineplus", "odphp"),
}


@dataclass(frozen=True)
class SearchOutcome:
    """Settled result of one (adapter, term) call"""

    adapter: str
    term: str
    records: Tuple[UpstreamRecord, ...] = ()
    error: Optional[str] = None

    @property
    def successful(self) -> bool:
        return self.error is None and len(self.records) > 0


@dataclass(frozen=True)
class AnalysisResult:
    user_message: str
    extracted_terms: Tuple[str, ...]
    medications: Tuple[UpstreamRecord, ...] = ()
    conditions: Tuple[UpstreamRecord, ...] = ()
    clinical_trials: Tuple[UpstreamRecord, ...] = ()
    health_information: Tuple[UpstreamRecord, ...] = ()
    drug_safety: Tuple[UpstreamRecord, ...] = ()
    health_guidance: Tuple[UpstreamRecord, ...] = ()
    api_sources: Tuple[str, ...] = ()
    search_attempts: int = 0
    successful_searches: int = 0
    confidence: str = "low"
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def __post_init__(self):
        if self.search_attempts < 0 or self.successful_searches < 0:
            raise ValueError("Search counters cannot be negative")
        if self.successful_searches > self.search_attempts:
            raise ValueError("successful_searches cannot exceed search_attempts")

    def category(self, category: RecordCategory) -> Tuple[UpstreamRecord, ...]:
        return getattr(self, category.value)

    def category_counts(self) -> Dict[str, int]:
        return {category.value: len(self.category(category)) for category in RecordCategory}

    def to_dict(self) -> Dict:
        data = {
            "user_message": self.user_message,
            "extracted_terms": list(self.extracted_terms),
            "api_sources": list(self.api_sources),
            "search_attempts": self.search_attempts,
            "successful_searches": self.successful_searches,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
        }
        for category in RecordCategory:
            data[category.value] = [record.to_dict() for record in self.category(category)]
        return data


def validate_profile(profile: ProfileInput) -> Optional[UserProfile]:
    """Coerce a raw profile mapping; malformed profiles are a caller error"""
    if profile is None or isinstance(profile, UserProfile):
        return profile
    if not isinstance(profile, Mapping):
        raise ValidationError(f"Profile must be a mapping, got {type(profile).__name__}")
    try:
        return UserProfile.model_validate(dict(profile))
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid user profile: {e.errors()[0]['msg']}")


class MedicalAggregator:
    """
    Fans extracted terms out to every upstream and merges what comes back
    Each (adapter, term) call is settled on its own, so one slow or failing
    upstream never costs the others their results.
    """

    def __init__(self, adapters: Sequence[BaseMedicalAPIClient],
                 extractor: Optional[TermExtractor] = None,
                 scorer: Optional[ConfidenceScorer] = None,
                 max_fan_out_calls: int = 100,
                 guidance_client: Optional[BaseMedicalAPIClient] = None,
                 cache: Optional[CacheManager] = None):
        if not adapters:
            raise ConfigurationError("MedicalAggregator needs at least one adapter")
        if max_fan_out_calls < len(adapters):
            raise ConfigurationError("max_fan_out_calls must allow one term per adapter")

        self.adapters = list(adapters)
        self.extractor = extractor or TermExtractor()
        self.scorer = scorer or ConfidenceScorer()
        self.max_fan_out_calls = max_fan_out_calls
        self.guidance_client = guidance_client or self.adapters_by_name().get("odphp")
        self.cache = cache or self.adapters[0].cache

    def adapters_by_name(self) -> Dict[str, BaseMedicalAPIClient]:
        return {adapter.name: adapter for adapter in self.adapters}

    def _adapter(self, name: str) -> BaseMedicalAPIClient:
        adapter = self.adapters_by_name().get(name)
        if adapter is None:
            raise ConfigurationError(f"No '{name}' adapter configured")
        return adapter

    # ===== ANALYSIS =====

    async def analyze(self, text: str, profile: ProfileInput = None) -> AnalysisResult:
        """Extract terms, query every upstream for each, and merge into one scored result"""
        user_profile = validate_profile(profile)

        personalize = (user_profile is not None and user_profile.has_demographics
                       and self.guidance_client is not None)

        terms = self.cap_terms(self.extractor.extract(text), reserved=1 if personalize else 0)
        calls = [self._settle(adapter, term) for term in terms for adapter in self.adapters]
        if personalize:
            calls.append(self._settle_personalized(user_profile))

        logger.info(f"🔍 Fanning out {len(calls)} searches for {len(terms)} terms")
        outcomes = await asyncio.gather(*calls)

        result = self.build_result(text, terms, outcomes)
        logger.info(
            f"✅ Analysis complete: {result.successful_searches}/{result.search_attempts} searches, "
            f"{len(result.api_sources)} sources, confidence {result.confidence}"
        )
        return result

    def cap_terms(self, terms: List[str], reserved: int = 0) -> List[str]:
        """Keep terms x adapters (plus reserved calls) within max_fan_out_calls"""
        limit = (self.max_fan_out_calls - reserved) // len(self.adapters)
        if len(terms) > limit:
            logger.info(f"Capping {len(terms)} terms to {limit} to bound fan-out")
        return terms[:limit]

    async def _settle(self, adapter: BaseMedicalAPIClient, term: str) -> SearchOutcome:
        try:
            records = await adapter.search(term)
        except Exception as e:
            logger.error(f"❌ {adapter.source_tag} search for '{term}' raised: {e!r}")
            return SearchOutcome(adapter.name, term, error=repr(e))
        return SearchOutcome(adapter.name, term, tuple(records))

    async def _settle_personalized(self, profile: UserProfile) -> SearchOutcome:
        client = self.guidance_client
        try:
            records = await client.get_personalized_recommendations(profile)
        except Exception as e:
            logger.error(f"❌ Personalized recommendations raised: {e!r}")
            return SearchOutcome(client.name, "personalized", error=repr(e))
        return SearchOutcome(client.name, "personalized", tuple(records))

    def build_result(self, text: str, terms: Sequence[str],
                     outcomes: Sequence[SearchOutcome]) -> AnalysisResult:
        """Route records by variant, dedupe by key within each category, then score"""
        categories: Dict[RecordCategory, List[UpstreamRecord]] = {c: [] for c in RecordCategory}
        seen_keys: Dict[RecordCategory, set] = {c: set() for c in RecordCategory}
        sources: List[str] = []
        successes = 0

        for outcome in outcomes:
            if not outcome.successful:
                continue
            successes += 1
            for record in outcome.records:
                category = record.category
                if record.key in seen_keys[category]:
                    continue
                seen_keys[category].add(record.key)
                categories[category].append(record)
                if record.source not in sources:
                    sources.append(record.source)

        counts = {category.value: len(records) for category, records in categories.items()}
        confidence = self.scorer.calculate_confidence(
            search_attempts=len(outcomes),
            successful_searches=successes,
            source_count=len(sources),
            category_counts=counts,
            term_count=len(terms)
        )

        return AnalysisResult(
            user_message=text,
            extracted_terms=tuple(terms),
            api_sources=tuple(sources),
            search_attempts=len(outcomes),
            successful_searches=successes,
            confidence=confidence,
            **{category.value: tuple(records) for category, records in categories.items()}
        )

    def confidence_breakdown(self, result: AnalysisResult) -> Dict:
        return self.scorer.breakdown(
            result.search_attempts, result.successful_searches, len(result.api_sources),
            result.category_counts(), len(result.extracted_terms)
        )

    # ===== DIRECT LOOKUPS =====

    async def lookup_medication(self, name: str) -> Dict:
        """RxNorm concepts plus OpenFDA labels and adverse events for one medication"""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Medication name is required")

        rxnorm = self._adapter("rxnorm")
        openfda = self._adapter("openfda")

        concepts, labels, events = await asyncio.gather(
            rxnorm.search(name),
            openfda.search_drug_labels(name),
            openfda.search_adverse_events(name)
        )

        properties = {}
        rxcui = next((c.rxcui for c in concepts if c.rxcui), None)
        if rxcui:
            properties = await rxnorm.get_drug_properties(rxcui)

        sources = []
        for record in [*concepts, *labels, *events]:
            if record.source not in sources:
                sources.append(record.source)

        return {
            "medication": name,
            "rxnorm": [c.to_dict() for c in concepts],
            "properties": properties,
            "labels": [label.to_dict() for label in labels],
            "adverse_events": [event.to_dict() for event in events],
            "sources": sources,
            "found": bool(concepts or labels or events),
            "timestamp": datetime.now().isoformat()
        }

    async def search_trials(self, condition: str, statuses: Optional[List[str]] = None,
                            phases: Optional[List[str]] = None, limit: int = 10) -> List[UpstreamRecord]:
        condition = (condition or "").strip()
        if not condition:
            raise ValidationError("Condition is required")
        client = self._adapter("clinical_trials")
        return await client.search_trials(condition, statuses=statuses, phases=phases, limit=limit)

    async def search_health_information(self, topic: str) -> Dict:
        """MedlinePlus topics and MyHealthfinder guidance for one topic"""
        topic = (topic or "").strip()
        if not topic:
            raise ValidationError("Topic is required")

        medlineplus = self._adapter("medlineplus")
        odphp = self._adapter("odphp")
        topics, guidance = await asyncio.gather(medlineplus.search(topic), odphp.search(topic))

        return {
            "topic": topic,
            "health_information": [t.to_dict() for t in topics],
            "health_guidance": [g.to_dict() for g in guidance],
            "timestamp": datetime.now().isoformat()
        }

    # ===== STATUS =====

    async def get_api_status(self) -> Dict:
        """Health-check every upstream in parallel and grade overall availability"""
        reports = await asyncio.gather(*(adapter.health_check() for adapter in self.adapters))
        services = {adapter.name: report for adapter, report in zip(self.adapters, reports)}

        healthy = sum(1 for report in reports if report["status"] == "healthy")
        total = len(reports)
        if healthy == total:
            overall = "excellent"
        elif healthy >= total * 0.8:
            overall = "good"
        elif healthy >= total * 0.6:
            overall = "fair"
        else:
            overall = "degraded"

        coverage = {}
        for area, names in COVERAGE_AREAS.items():
            present = [services[n] for n in names if n in services]
            if present:
                up = sum(1 for report in present if report["status"] == "healthy")
                coverage[area] = round(up / len(present) * 100)

        return {
            "overall": overall,
            "healthy_services": healthy,
            "total_services": total,
            "services": services,
            "coverage": coverage,
            "last_checked": datetime.now().isoformat()
        }

    # ===== CACHE =====

    def cache_stats(self) -> Dict:
        return self.cache.stats()

    def clear_cache(self) -> int:
        """Drop every cached upstream response; returns how many entries were removed"""
        removed = len(self.cache)
        self.cache.clear()
        logger.info(f"🧹 Cleared {removed} cache entries")
        return removed
