# =============================================================================
# services/medical_apis/__init__.py
# =============================================================================

"""
Multi-source medical aggregation

Wires the six upstream clients to a shared cache and HTTP connection pool
and hands them to a MedicalAggregator:
- RxNorm, FHIR: medications and conditions
- ClinicalTrials.gov: studies by condition
- MedlinePlus, MyHealthfinder: patient education and preventive guidance
- OpenFDA: adverse events and product labels
"""

import logging
from typing import Callable, List, Optional

import httpx

from core.config import Settings, UpstreamConfig
from services.cache import CacheManager
from .core import (
    AnalysisResult,
    BaseMedicalAPIClient,
    ConfidenceScorer,
    MedicalAggregator,
    RateLimiter,
    TermExtractor,
    UserProfile
)
from .upstreams import (
    RxNormClient,
    FHIRClient,
    ClinicalTrialsClient,
    MedlinePlusClient,
    OpenFDAClient,
    ODPHPClient
)

logger = logging.getLogger(__name__)

# Settings attribute name -> client class, in fan-out order
ADAPTER_CLASSES = {
    "rxnorm": RxNormClient,
    "fhir": FHIRClient,
    "clinical_trials": ClinicalTrialsClient,
    "medlineplus": MedlinePlusClient,
    "openfda": OpenFDAClient,
    "odphp": ODPHPClient,
}

RateLimiterFactory = Callable[[UpstreamConfig], RateLimiter]


def build_adapters(app_settings: Settings, cache: CacheManager,
                   http_client: Optional[httpx.AsyncClient] = None,
                   rate_limiter_factory: Optional[RateLimiterFactory] = None) -> List[BaseMedicalAPIClient]:
    """One client per upstream, each with its own rate limiter"""
    adapters = []
    for name, client_class in ADAPTER_CLASSES.items():
        config = getattr(app_settings, name)
        adapters.append(client_class(
            config,
            cache,
            http_client=http_client,
            rate_limiter=rate_limiter_factory(config) if rate_limiter_factory else None,
            fallback_table=client_class.FALLBACK_TABLE if app_settings.use_fallback_data else {},
            user_agent=app_settings.user_agent,
            no_cache_patterns=app_settings.no_cache_patterns
        ))
    return adapters


def build_aggregator(app_settings: Settings, cache: CacheManager,
                     http_client: Optional[httpx.AsyncClient] = None,
                     rate_limiter_factory: Optional[RateLimiterFactory] = None) -> MedicalAggregator:
    adapters = build_adapters(app_settings, cache, http_client, rate_limiter_factory)
    logger.info(f"🏥 Aggregator ready with {len(adapters)} upstreams: {', '.join(a.name for a in adapters)}")
    return MedicalAggregator(
        adapters,
        extractor=TermExtractor(max_terms=app_settings.max_search_terms),
        scorer=ConfidenceScorer(),
        max_fan_out_calls=app_settings.max_fan_out_calls,
        cache=cache
    )


__all__ = [
    "ADAPTER_CLASSES",
    "AnalysisResult",
    "MedicalAggregator",
    "RateLimiterFactory",
    "UserProfile",
    "build_adapters",
    "build_aggregator"
]
