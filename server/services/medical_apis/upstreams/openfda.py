# =============================================================================
# services/medical_apis/upstreams/openfda.py
# =============================================================================

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Union

from core.exceptions import ResponseParseError
from ..core.base_client import BaseMedicalAPIClient
from ..core.records import AdverseEventRecord, DrugLabelRecord, truncate

logger = logging.getLogger(__name__)

SOURCE = "OpenFDA"
MAX_REPORTS = 50
MAX_REACTIONS = 10
MAX_LABELS = 3

SafetyRecord = Union[AdverseEventRecord, DrugLabelRecord]


def frequency_bucket(count: int) -> str:
    if count > 10:
        return "Common"
    if count > 5:
        return "Occasional"
    return "Rare"


def parse_adverse_events(data: Dict, drug: str) -> List[AdverseEventRecord]:
    """Count reaction terms across at most 50 reports and keep the 10 most frequent"""
    if not isinstance(data, dict):
        raise ResponseParseError("OpenFDA event payload is not an object", api_name="openfda")

    counts = Counter()
    for report in (data.get("results") or [])[:MAX_REPORTS]:
        for reaction in (report.get("patient") or {}).get("reaction") or []:
            term = reaction.get("reactionmeddrapt")
            if term:
                counts[term] += 1

    return [
        AdverseEventRecord(
            key=f"openfda-event:{drug.lower()}:{reaction.lower()}",
            label=reaction,
            source=SOURCE,
            report_count=count,
            frequency=frequency_bucket(count)
        )
        for reaction, count in counts.most_common(MAX_REACTIONS)
    ]


def _first(section: Optional[List[str]]) -> Optional[str]:
    return section[0] if section else None


def parse_drug_labels(data: Dict, drug: str) -> List[DrugLabelRecord]:
    if not isinstance(data, dict):
        raise ResponseParseError("OpenFDA label payload is not an object", api_name="openfda")

    labels = []
    for label in (data.get("results") or [])[:MAX_LABELS]:
        openfda = label.get("openfda") or {}
        brand = _first(openfda.get("brand_name"))
        generic = _first(openfda.get("generic_name"))
        key = label.get("set_id") or label.get("id") or f"{brand or generic or drug}".lower()

        labels.append(DrugLabelRecord(
            key=f"openfda-label:{key}",
            label=brand or generic or drug,
            source=SOURCE,
            generic_name=generic,
            warnings=truncate(_first(label.get("warnings")), 500),
            contraindications=truncate(_first(label.get("contraindications")), 300),
            dosage=truncate(_first(label.get("dosage_and_administration")), 300),
            adverse_reactions=truncate(_first(label.get("adverse_reactions")), 400)
        ))
    return labels


def _fallback_safety(drug: str) -> List[SafetyRecord]:
    return [
        AdverseEventRecord(
            key=f"openfda-fallback-event:{drug}",
            label="Consult healthcare provider for safety information",
            source="OpenFDA-Fallback",
            fallback=True,
            frequency="Always recommended"
        ),
        DrugLabelRecord(
            key=f"openfda-fallback-label:{drug}",
            label=drug,
            source="OpenFDA-Fallback",
            fallback=True,
            warnings="Always read medication labels and consult healthcare providers"
        ),
    ]


class OpenFDAClient(BaseMedicalAPIClient):
    """OpenFDA drug safety - adverse event reports and product labels"""

    name = "openfda"
    source_tag = SOURCE
    cache_prefix = "openfda_"
    health_check_term = "aspirin"

    FALLBACK_TABLE = {
        drug: _fallback_safety(drug)
        for drug in ("aspirin", "ibuprofen", "acetaminophen", "metformin", "lisinopril")
    }

    async def search(self, term: str, skip_cache: bool = False) -> List[SafetyRecord]:
        """Both lookups run independently; either may fail without losing the other"""
        events, labels = await asyncio.gather(
            self.search_adverse_events(term, skip_cache=skip_cache),
            self.search_drug_labels(term, skip_cache=skip_cache)
        )
        return list(events) + list(labels)

    async def search_adverse_events(self, drug: str, limit: int = 10,
                                    skip_cache: bool = False) -> List[AdverseEventRecord]:
        async def fetch():
            params = {"search": f'patient.drug.medicinalproduct:"{drug}"', "limit": limit}
            data = await self._get_json(self.config.endpoint("events"), params=params)
            return parse_adverse_events(data, drug)

        records = await self._cached_lookup(
            self._cache_key("events", drug), self.config.cache_ttl_seconds, fetch, drug, skip_cache
        )
        return self._only(records, AdverseEventRecord)

    async def search_drug_labels(self, drug: str, limit: int = MAX_LABELS,
                                 skip_cache: bool = False) -> List[DrugLabelRecord]:
        async def fetch():
            params = {
                "search": f'openfda.brand_name:"{drug}" OR openfda.generic_name:"{drug}"',
                "limit": limit
            }
            data = await self._get_json(self.config.endpoint("labels"), params=params)
            return parse_drug_labels(data, drug)

        ttl = self.config.secondary_ttl_seconds or self.config.cache_ttl_seconds
        records = await self._cached_lookup(
            self._cache_key("labels", drug), ttl, fetch, drug, skip_cache
        )
        return self._only(records, DrugLabelRecord)

    @staticmethod
    def _only(records, record_type):
        # Fallback entries hold both record kinds; each lookup keeps its own
        return [r for r in records if isinstance(r, record_type)]
