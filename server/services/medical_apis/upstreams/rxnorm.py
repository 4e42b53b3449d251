# =============================================================================
# services/medical_apis/upstreams/rxnorm.py
# =============================================================================

import logging
from typing import Dict, List

import httpx

from core.exceptions import ExternalAPIError, ResponseParseError
from ..core.base_client import BaseMedicalAPIClient
from ..core.records import MedicationRecord

logger = logging.getLogger(__name__)

SOURCE = "RxNorm"


def parse_drug_concepts(data: Dict) -> List[MedicationRecord]:
    """Flatten RxNorm's concept groups into one record per concept"""
    if not isinstance(data, dict):
        raise ResponseParseError("RxNorm payload is not an object", api_name="rxnorm")

    records = []
    drug_group = data.get("drugGroup") or {}

    for group in drug_group.get("conceptGroup") or []:
        for concept in group.get("conceptProperties") or []:
            rxcui = concept.get("rxcui")
            if not rxcui:
                continue
            records.append(MedicationRecord(
                key=f"rxcui:{rxcui}",
                label=concept.get("name", "Unknown"),
                source=SOURCE,
                rxcui=rxcui,
                term_type=concept.get("tty") or group.get("tty"),
                synonym=concept.get("synonym") or None,
                status="suppressed" if concept.get("suppress") == "Y" else "active"
            ))

    return records


class RxNormClient(BaseMedicalAPIClient):
    """RxNorm drug terminology (NIH) - drug concepts by name"""

    name = "rxnorm"
    source_tag = SOURCE
    cache_prefix = "rx_"
    health_check_term = "aspirin"

    # RxNorm outages degrade to no medication data
    FALLBACK_TABLE = {}

    async def search(self, term: str, skip_cache: bool = False) -> List[MedicationRecord]:
        async def fetch():
            data = await self._get_json(self.config.endpoint("drugs"), params={"name": term})
            return parse_drug_concepts(data)

        return await self._cached_lookup(
            self._cache_key("search", term), self.config.cache_ttl_seconds, fetch, term, skip_cache
        )

    async def get_drug_properties(self, rxcui: str, skip_cache: bool = False) -> Dict:
        """Fetch the property sheet for one concept; empty dict when unavailable"""
        cache_key = self._cache_key("props", rxcui)
        if not skip_cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                return cached

        try:
            await self.rate_limiter.before_call()
            data = await self._get_json(self.config.endpoint("properties", rxcui=rxcui))
        except (ExternalAPIError, ResponseParseError) as e:
            logger.warning(f"⚠️ RxNorm properties failed for {rxcui}: {e.message}")
            return {}
        except httpx.HTTPError as e:
            logger.error(f"❌ RxNorm properties error for {rxcui}: {e!r}")
            return {}

        properties = (data.get("properties") or {}) if isinstance(data, dict) else {}
        await self.cache.set(cache_key, properties, self.config.cache_ttl_seconds)
        return properties
