# =============================================================================
# services/medical_apis/upstreams/fhir.py
# =============================================================================

import logging
from typing import Dict, List, Optional, Union

from core.exceptions import ResponseParseError
from ..core.base_client import BaseMedicalAPIClient
from ..core.records import ConditionRecord, MedicationRecord

logger = logging.getLogger(__name__)

SOURCE = "FHIR"
FHIR_JSON = "application/fhir+json"


# ===== CODEABLE CONCEPT HELPERS =====

def display_name(concept: Optional[Dict]) -> Optional[str]:
    """Text first, then the first coding's display, then its code"""
    if not concept:
        return None
    coding = (concept.get("coding") or [{}])[0]
    return concept.get("text") or coding.get("display") or coding.get("code")


def first_coding(concept: Optional[Dict], field: str) -> Optional[str]:
    if not concept or not concept.get("coding"):
        return None
    return concept["coding"][0].get(field)


def status_code(concept: Optional[Dict]) -> str:
    return first_coding(concept, "code") or "unknown"


# ===== BUNDLE PARSING =====

def parse_bundle(bundle: Dict) -> List[Union[MedicationRecord, ConditionRecord]]:
    """Project a searchset bundle's Medication and Condition resources into flat records"""
    if not isinstance(bundle, dict) or bundle.get("resourceType") not in (None, "Bundle"):
        raise ResponseParseError("FHIR payload is not a Bundle", api_name="fhir")

    records = []
    for entry in bundle.get("entry") or []:
        resource = entry.get("resource") or {}
        resource_type = resource.get("resourceType")

        if resource_type == "Medication":
            records.append(_medication_record(resource))
        elif resource_type == "Condition":
            records.append(_condition_record(resource))

    return records


def _medication_record(resource: Dict) -> MedicationRecord:
    code = resource.get("code")
    manufacturer = (resource.get("manufacturer") or {}).get("display")
    return MedicationRecord(
        key=f"Medication/{resource.get('id')}",
        label=display_name(code) or "Unknown",
        source=SOURCE,
        code=first_coding(code, "code"),
        system=first_coding(code, "system"),
        form=display_name(resource.get("form")),
        status=resource.get("status") or "unknown",
        synonym=manufacturer
    )


def _condition_record(resource: Dict) -> ConditionRecord:
    code = resource.get("code")
    categories = resource.get("category") or [None]
    return ConditionRecord(
        key=f"Condition/{resource.get('id')}",
        label=display_name(code) or "Unknown",
        source=SOURCE,
        code=first_coding(code, "code"),
        system=first_coding(code, "system"),
        category_name=display_name(categories[0]),
        clinical_status=status_code(resource.get("clinicalStatus")),
        verification_status=status_code(resource.get("verificationStatus")),
        severity=display_name(resource.get("severity")),
        onset=resource.get("onsetDateTime") or resource.get("onsetString")
    )


class FHIRClient(BaseMedicalAPIClient):
    """HAPI FHIR R4 server - Medication and Condition resources in one system-level search"""

    name = "fhir"
    source_tag = SOURCE
    cache_prefix = "fhir_"
    health_check_term = "diabetes"

    FALLBACK_TABLE = {}

    def __init__(self, *args, page_size: int = 10, **kwargs):
        super().__init__(*args, **kwargs)
        self.page_size = page_size

    async def search(self, term: str, skip_cache: bool = False) -> List[Union[MedicationRecord, ConditionRecord]]:
        async def fetch():
            params = {
                "_type": "Medication,Condition",
                "_content": term,
                "_count": self.page_size
            }
            bundle = await self._get_json(self.config.endpoint("search"), params=params, accept=FHIR_JSON)
            return parse_bundle(bundle)

        return await self._cached_lookup(
            self._cache_key("search", term), self.config.cache_ttl_seconds, fetch, term, skip_cache
        )

    async def search_medications(self, term: str, skip_cache: bool = False) -> List[MedicationRecord]:
        return [r for r in await self.search(term, skip_cache) if isinstance(r, MedicationRecord)]

    async def search_conditions(self, term: str, skip_cache: bool = False) -> List[ConditionRecord]:
        return [r for r in await self.search(term, skip_cache) if isinstance(r, ConditionRecord)]
