# =============================================================================
# services/medical_apis/upstreams/clinical_trials.py
# =============================================================================

import logging
from typing import Dict, Iterable, List, Optional

from core.exceptions import ResponseParseError
from ..core.base_client import BaseMedicalAPIClient
from ..core.records import TrialRecord

logger = logging.getLogger(__name__)

SOURCE = "ClinicalTrials.gov"

# The v2 API rejects filter.overallStatus / filter.phase as unknown
# parameters, so only these are ever sent
ALLOWED_PARAMS = frozenset({
    "query.cond", "query.intr", "query.titles", "query.term", "query.locn",
    "pageSize", "countTotal", "format", "pageToken",
})

RECRUITING_STATUSES = ("RECRUITING", "NOT_YET_RECRUITING", "ENROLLING_BY_INVITATION")


def parse_studies(data: Dict, condition: Optional[str] = None) -> List[TrialRecord]:
    """Project v2 ``studies[].protocolSection`` into trial records"""
    if not isinstance(data, dict):
        raise ResponseParseError("ClinicalTrials.gov payload is not an object", api_name="clinical_trials")

    trials = []
    for study in data.get("studies") or []:
        protocol = study.get("protocolSection")
        if not protocol:
            continue

        identification = protocol.get("identificationModule") or {}
        status = protocol.get("statusModule") or {}
        design = protocol.get("designModule") or {}
        nct_id = identification.get("nctId")
        if not nct_id:
            continue

        phases = design.get("phases") or []
        trials.append(TrialRecord(
            key=nct_id,
            label=identification.get("briefTitle") or "Clinical study available",
            source=SOURCE,
            status=status.get("overallStatus") or "Status unknown",
            phase=phases[0] if phases else "Phase not specified",
            enrollment=(design.get("enrollmentInfo") or {}).get("count"),
            study_type=design.get("studyType"),
            start_date=(status.get("startDateStruct") or {}).get("date"),
            condition=condition
        ))

    return trials


def filter_trials(trials: Iterable[TrialRecord],
                  statuses: Optional[Iterable[str]] = None,
                  phases: Optional[Iterable[str]] = None) -> List[TrialRecord]:
    """Client-side status/phase filtering, case-insensitive"""
    wanted_statuses = {s.upper() for s in statuses or []}
    wanted_phases = {p.upper() for p in phases or []}

    return [
        trial for trial in trials
        if (not wanted_statuses or trial.status.upper() in wanted_statuses)
        and (not wanted_phases or trial.phase.upper() in wanted_phases)
    ]


def _fallback_trial(condition: str) -> TrialRecord:
    return TrialRecord(
        key=f"fallback-trial:{condition}",
        label=f"Clinical trials may be available for {condition}",
        source="ClinicalTrials-Fallback",
        fallback=True,
        status="Visit ClinicalTrials.gov to search for current studies",
        phase="Various phases available",
        study_type="Various study types",
        condition=condition
    )


class ClinicalTrialsClient(BaseMedicalAPIClient):
    """ClinicalTrials.gov API v2 - studies by condition"""

    name = "clinical_trials"
    source_tag = SOURCE
    cache_prefix = "clinical_trials_"
    health_check_term = "diabetes"

    FALLBACK_TABLE = {
        condition: [_fallback_trial(condition)]
        for condition in ("diabetes", "hypertension", "asthma", "cancer", "depression")
    }

    def __init__(self, *args, page_size: int = 10, **kwargs):
        super().__init__(*args, **kwargs)
        self.page_size = page_size

    def build_params(self, condition: str, page_size: int, page_token: Optional[str] = None) -> Dict:
        params = {
            "query.cond": condition,
            "pageSize": page_size,
            "countTotal": "true",
            "format": "json",
        }
        if page_token:
            params["pageToken"] = page_token
        return {k: v for k, v in params.items() if k in ALLOWED_PARAMS}

    async def search(self, term: str, skip_cache: bool = False) -> List[TrialRecord]:
        return await self.search_trials(term, limit=self.page_size, skip_cache=skip_cache)

    async def search_trials(self, condition: str,
                            statuses: Optional[List[str]] = None,
                            phases: Optional[List[str]] = None,
                            limit: int = 10,
                            skip_cache: bool = False) -> List[TrialRecord]:
        """
        Search studies for a condition, filtering status and phase locally
        Filtered searches over-fetch so the limit can still be met after filtering.
        """
        filtered = bool(statuses or phases)
        page_size = min(limit * 5, 100) if filtered else limit

        async def fetch():
            data = await self._get_json(
                self.config.endpoint("studies"), params=self.build_params(condition, page_size)
            )
            return parse_studies(data, condition)

        trials = await self._cached_lookup(
            self._cache_key("search", condition, str(page_size)),
            self.config.cache_ttl_seconds, fetch, condition, skip_cache
        )

        if filtered:
            trials = filter_trials(trials, statuses, phases)
            logger.info(f"🔬 {len(trials)} trials for '{condition}' after status/phase filtering")

        return trials[:limit]

    async def recruiting_trials(self, condition: str, limit: int = 10) -> List[TrialRecord]:
        return await self.search_trials(condition, statuses=list(RECRUITING_STATUSES), limit=limit)
