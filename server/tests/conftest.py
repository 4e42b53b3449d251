"""
Aggregator Test Configuration

Fixtures for exercising the upstream clients, aggregator and routes without
network access. Every upstream is served by one httpx.MockTransport stub that
answers with canned payloads shaped like the real services.
"""
from typing import Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from core.config import settings
from services.cache import CacheManager
from services.medical_apis import build_aggregator
from services.medical_apis.core import RateLimiter

RXNAV = "rxnav.nlm.nih.gov"
HAPI = "hapi.fhir.org"
CTGOV = "clinicaltrials.gov"
NLM_SEARCH = "wsearch.nlm.nih.gov"
OPENFDA = "api.fda.gov"
ODPHP = "odphp.health.gov"

ODPHP_PATH = "/myhealthfinder/api/v4"


class FakeClock:
    """Manually advanced monotonic clock; ``sleep`` advances it instead of waiting"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class UpstreamStub:
    """Routes requests by (host, path) to canned responses and records every call"""

    def __init__(self):
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: List[httpx.Request] = []
        self.failing: Dict[Tuple[str, Optional[str]], int] = {}

    def json(self, host: str, path: str, payload, status: int = 200):
        self.routes[(host, path)] = lambda request: httpx.Response(status, json=payload)

    def text(self, host: str, path: str, body: str, content_type: str):
        self.routes[(host, path)] = lambda request: httpx.Response(
            200, text=body, headers={"content-type": content_type}
        )

    def handler(self, host: str, path: str, func: Callable[[httpx.Request], httpx.Response]):
        self.routes[(host, path)] = func

    def fail(self, host: str, path: Optional[str] = None, status: int = 503):
        """Fail every request to a host (or to one path on it)"""
        self.failing[(host, path)] = status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host, path = request.url.host, request.url.path

        for key in ((host, path), (host, None)):
            if key in self.failing:
                return httpx.Response(self.failing[key], json={"error": "unavailable"})

        route = self.routes.get((host, path))
        if route is None:
            return httpx.Response(404, json={"error": {"code": "NOT_FOUND"}})
        return route(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def calls_to(self, host: str, path: Optional[str] = None) -> List[httpx.Request]:
        return [r for r in self.requests
                if r.url.host == host and (path is None or r.url.path == path)]


# =============================================================================
# CANNED PAYLOADS
# =============================================================================

RXNORM_DRUGS = {
    "drugGroup": {
        "name": None,
        "conceptGroup": [
            {"tty": "BPCK"},
            {
                "tty": "SCD",
                "conceptProperties": [
                    {"rxcui": "198464", "name": "aspirin 300 MG Rectal Suppository", "synonym": "",
                     "tty": "SCD", "language": "ENG", "suppress": "N"},
                    {"rxcui": "243670", "name": "aspirin 81 MG Oral Tablet", "synonym": "",
                     "tty": "SCD", "language": "ENG", "suppress": "N"},
                ]
            },
            {
                "tty": "SBD",
                "conceptProperties": [
                    {"rxcui": "1052678", "name": "Bayer Aspirin 325 MG Oral Tablet", "synonym": "Bayer",
                     "tty": "SBD", "language": "ENG", "suppress": "N"},
                ]
            },
        ]
    }
}

RXNORM_PROPERTIES = {
    "properties": {"rxcui": "198464", "name": "aspirin 300 MG Rectal Suppository", "tty": "SCD"}
}

FHIR_BUNDLE = {
    "resourceType": "Bundle",
    "type": "searchset",
    "entry": [
        {"resource": {
            "resourceType": "Medication",
            "id": "med-1",
            "status": "active",
            "code": {"coding": [{"system": "http://www.nlm.nih.gov/research/umls/rxnorm",
                                 "code": "1191", "display": "Aspirin"}]},
            "form": {"text": "Tablet"}
        }},
        {"resource": {
            "resourceType": "Condition",
            "id": "cond-1",
            "code": {"text": "Tension-type headache",
                     "coding": [{"system": "http://snomed.info/sct", "code": "398057008"}]},
            "clinicalStatus": {"coding": [{"code": "active"}]},
            "verificationStatus": {"coding": [{"code": "confirmed"}]},
            "category": [{"coding": [{"display": "Problem List Item"}]}],
            "onsetDateTime": "2023-04-01"
        }},
        {"resource": {"resourceType": "Patient", "id": "pat-1"}},
    ]
}


def _study(nct_id: str, title: str, status: str, phases: List[str], enrollment: Optional[int]) -> Dict:
    design = {"studyType": "INTERVENTIONAL", "phases": phases}
    if enrollment is not None:
        design["enrollmentInfo"] = {"count": enrollment}
    return {"protocolSection": {
        "identificationModule": {"nctId": nct_id, "briefTitle": title},
        "statusModule": {"overallStatus": status, "startDateStruct": {"date": "2024-01"}},
        "designModule": design
    }}


CLINICAL_TRIALS = {
    "totalCount": 3,
    "studies": [
        _study("NCT00000001", "Migraine Prevention Study", "RECRUITING", ["PHASE2"], 120),
        _study("NCT00000002", "Chronic Headache Registry", "COMPLETED", ["NA"], 300),
        _study("NCT00000003", "Cluster Headache Trial", "NOT_YET_RECRUITING", ["PHASE3"], None),
    ]
}

MEDLINEPLUS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<nlmSearchResult>
<term>headache</term>
<count>2</count>
<list num="2" start="0" per="10">
<document rank="0" url="https://medlineplus.gov/headache.html">
<content name="title">&lt;span class="qt0"&gt;Headache&lt;/span&gt;</content>
<content name="FullSummary">&lt;p&gt;Almost everyone has had a &lt;span class="qt0"&gt;headache&lt;/span&gt;.&lt;/p&gt;</content>
<content name="snippet">Almost everyone has had a headache.</content>
</document>
<document rank="1" url="https://medlineplus.gov/migraine.html">
<content name="title">Migraine</content>
<content name="snippet">Migraines are a recurring type of headache.</content>
</document>
</list>
</nlmSearchResult>
"""


def _adverse_event_reports() -> Dict:
    reports = []
    for i in range(12):
        reactions = [{"reactionmeddrapt": "NAUSEA"}]
        if i < 7:
            reactions.append({"reactionmeddrapt": "HEADACHE"})
        if i < 2:
            reactions.append({"reactionmeddrapt": "RASH"})
        reports.append({"patient": {"reaction": reactions}})
    return {"results": reports}


OPENFDA_EVENTS = _adverse_event_reports()

OPENFDA_LABELS = {
    "results": [{
        "set_id": "abc-123",
        "openfda": {"brand_name": ["Bayer Aspirin"], "generic_name": ["ASPIRIN"]},
        "warnings": ["W" * 600],
        "contraindications": ["Do not use if allergic to aspirin."],
        "dosage_and_administration": ["Take 1 tablet every 4 hours."],
        "adverse_reactions": ["Stomach upset."]
    }]
}

ODPHP_TOPICS = {
    "527": ("Get Help for Headaches", [{"Name": "Pain"}]),
    "30530": ("Manage Stress", [{"Name": "Headache"}, {"Name": "Mental Health"}]),
    "25": ("Eat Healthy", [{"Name": "Nutrition"}]),
}

ODPHP_ITEMLIST = {
    "Result": {"Resources": {"Resource": [
        {"Id": topic_id, "Title": title, "Categories": {"Category": categories}}
        for topic_id, (title, categories) in ODPHP_TOPICS.items()
    ]}}
}

ODPHP_RECOMMENDATIONS = {
    "Result": {"Resources": {"all": {"Resource": [
        {"Id": "30", "Type": "Topic", "Title": "Get Screened for Cervical Cancer",
         "Categories": {"Category": [{"Name": "Cancer"}]},
         "Sections": {"section": [{"Title": "Overview", "Description": "<p>Screening saves lives.</p>"}]}},
        {"Id": "514", "Type": "Topic", "Title": "Get Your Blood Pressure Checked",
         "Sections": {"section": [{"Title": "The Basics", "Description": "Check it every year."}]}},
    ]}}}
}


def odphp_topic_details(request: httpx.Request) -> httpx.Response:
    topic_id = request.url.params.get("TopicId")
    title, categories = ODPHP_TOPICS.get(topic_id, ("Unknown", []))
    return httpx.Response(200, json={"Result": {"Resources": {"Resource": [{
        "Id": topic_id,
        "Title": title,
        "AccessibleVersion": f"https://health.gov/myhealthfinder/topic/{topic_id}",
        "Categories": {"Category": categories},
        "Sections": {"section": [
            {"Title": "The Basics", "Description": f"<p>{title} &amp; more.</p>"}
        ]}
    }]}}})


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    """Fake monotonic clock shared by the cache and rate limiter tests."""
    return FakeClock()


@pytest.fixture
def cache():
    return CacheManager(max_entries=100)


@pytest.fixture
def stub():
    """Stub with every upstream answering successfully."""
    upstreams = UpstreamStub()
    upstreams.json(RXNAV, "/REST/drugs.json", RXNORM_DRUGS)
    upstreams.json(RXNAV, "/REST/rxcui/198464/properties.json", RXNORM_PROPERTIES)
    upstreams.json(HAPI, "/baseR4/", FHIR_BUNDLE)
    upstreams.json(CTGOV, "/api/v2/studies", CLINICAL_TRIALS)
    upstreams.text(NLM_SEARCH, "/ws/query", MEDLINEPLUS_XML, "text/xml; charset=UTF-8")
    upstreams.json(OPENFDA, "/drug/event.json", OPENFDA_EVENTS)
    upstreams.json(OPENFDA, "/drug/label.json", OPENFDA_LABELS)
    upstreams.json(ODPHP, f"{ODPHP_PATH}/itemlist.json", ODPHP_ITEMLIST)
    upstreams.handler(ODPHP, f"{ODPHP_PATH}/topicsearch.json", odphp_topic_details)
    upstreams.json(ODPHP, f"{ODPHP_PATH}/myhealthfinder.json", ODPHP_RECOMMENDATIONS)
    return upstreams


async def _no_sleep(seconds: float):
    return None


@pytest.fixture
def limiter_factory():
    """Rate limiters that keep their bookkeeping but never actually wait."""
    return lambda config: RateLimiter(config.requests_per_minute, sleep=_no_sleep)


@pytest.fixture
async def http_client(stub):
    async with httpx.AsyncClient(transport=stub.transport) as client:
        yield client


@pytest.fixture
def make_client(cache, http_client, limiter_factory):
    """Build one upstream client wired to the stub transport."""
    def _make(client_class, **kwargs):
        config = getattr(settings, client_class.name)
        kwargs.setdefault("rate_limiter", limiter_factory(config))
        return client_class(config, cache, http_client=http_client, **kwargs)
    return _make


@pytest.fixture
def make_aggregator(cache, http_client, limiter_factory):
    """Build the full six-upstream aggregator against the stub."""
    def _make(use_fallback_data: bool = True, **overrides):
        app_settings = settings.model_copy(update={"use_fallback_data": use_fallback_data, **overrides})
        return build_aggregator(app_settings, cache, http_client, limiter_factory)
    return _make
