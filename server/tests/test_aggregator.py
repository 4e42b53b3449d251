"""
Tests for the fan-out aggregator: settlement, routing, dedupe and scoring
"""
import pytest

from core.config import settings
from core.exceptions import ConfigurationError, ValidationError
from services.medical_apis import ADAPTER_CLASSES
from services.medical_apis.core import (
    AnalysisResult,
    BaseMedicalAPIClient,
    MedicalAggregator,
    MedicationRecord,
    RecordCategory,
    SearchOutcome,
    UserProfile,
    validate_profile
)

from .conftest import CTGOV, HAPI, NLM_SEARCH, ODPHP, ODPHP_PATH, OPENFDA, RXNAV

ALL_HOSTS = (RXNAV, HAPI, CTGOV, NLM_SEARCH, OPENFDA, ODPHP)

EVERY_SOURCE = ["RxNorm", "FHIR", "ClinicalTrials.gov", "MedlinePlus", "OpenFDA", "MyHealthfinder"]


class ExplodingClient(BaseMedicalAPIClient):
    """Adapter whose search escapes with an unexpected error"""

    name = "exploding"
    source_tag = "Exploding"

    async def search(self, term, skip_cache=False):
        raise RuntimeError("adapter bug")


class StaticClient(BaseMedicalAPIClient):
    """Adapter that always answers with the same record"""

    name = "static"
    source_tag = "Static"

    async def search(self, term, skip_cache=False):
        return [MedicationRecord(key="static:1", label="Static drug", source="Static")]


class TestAnalyze:

    async def test_simple_query_reaches_every_source(self, make_aggregator):
        aggregator = make_aggregator()
        result = await aggregator.analyze("I have a headache")

        assert result.extracted_terms == ("headache",)
        assert result.search_attempts == 6
        assert result.successful_searches == 6
        assert list(result.api_sources) == EVERY_SOURCE
        assert result.confidence == "very_high"

        assert len(result.medications) == 4  # 3 RxNorm concepts + 1 FHIR Medication
        assert [c.key for c in result.conditions] == ["Condition/cond-1"]
        assert len(result.clinical_trials) == 3
        assert [t.label for t in result.health_information] == ["Headache", "Migraine"]
        assert len(result.drug_safety) == 4
        assert [g.key for g in result.health_guidance] == ["odphp-topic:527", "odphp-topic:30530"]

    async def test_empty_input_makes_no_calls(self, make_aggregator, stub):
        aggregator = make_aggregator()
        result = await aggregator.analyze("")

        assert result.extracted_terms == ()
        assert result.search_attempts == 0
        assert result.successful_searches == 0
        assert result.api_sources == ()
        assert result.confidence == "low"
        assert stub.requests == []

    async def test_only_stop_words(self, make_aggregator, stub):
        result = await make_aggregator().analyze("what is the and of it")
        assert result.search_attempts == 0
        assert stub.requests == []

    async def test_total_outage_without_fallbacks(self, make_aggregator, stub):
        for host in ALL_HOSTS:
            stub.fail(host)
        aggregator = make_aggregator(use_fallback_data=False)

        result = await aggregator.analyze("I have a headache")

        assert result.search_attempts == 6
        assert result.successful_searches == 0
        assert result.api_sources == ()
        assert all(count == 0 for count in result.category_counts().values())
        assert result.confidence == "low"

    async def test_total_outage_with_fallbacks(self, make_aggregator, stub):
        for host in ALL_HOSTS:
            stub.fail(host)
        aggregator = make_aggregator(use_fallback_data=True)

        result = await aggregator.analyze("I have a headache")

        assert result.search_attempts == 6
        assert result.successful_searches == 2
        assert list(result.api_sources) == ["MedlinePlus-Fallback", "MyHealthfinder-Fallback"]
        assert all(r.fallback for r in result.health_information + result.health_guidance)
        assert result.confidence == "low"

    async def test_one_upstream_failing(self, make_aggregator, stub):
        stub.fail(HAPI)
        result = await make_aggregator().analyze("I have a headache")

        assert result.search_attempts == 6
        assert result.successful_searches == 5
        assert "FHIR" not in result.api_sources
        assert result.conditions == ()
        assert len(result.medications) == 3

    async def test_half_the_upstreams_failing(self, make_aggregator, stub):
        for host in (HAPI, CTGOV, OPENFDA):
            stub.fail(host)
        result = await make_aggregator(use_fallback_data=False).analyze("I have a headache")

        assert result.search_attempts == 6
        assert result.successful_searches == 3
        assert result.successful_searches < result.search_attempts
        assert result.medications
        assert result.health_information
        assert result.health_guidance
        assert result.conditions == ()
        assert result.clinical_trials == ()
        assert result.drug_safety == ()
        assert list(result.api_sources) == ["RxNorm", "MedlinePlus", "MyHealthfinder"]

    async def test_adapter_exception_is_settled(self, make_client, cache):
        from services.medical_apis.upstreams import RxNormClient

        exploding = ExplodingClient(settings.rxnorm, cache, fallback_table={})
        aggregator = MedicalAggregator([make_client(RxNormClient), exploding])

        result = await aggregator.analyze("aspirin")

        assert result.search_attempts == 2
        assert result.successful_searches == 1
        assert list(result.api_sources) == ["RxNorm"]

    async def test_empty_result_is_not_a_success(self, make_aggregator, stub):
        stub.json(CTGOV, "/api/v2/studies", {"totalCount": 0, "studies": []})
        result = await make_aggregator().analyze("I have a headache")

        assert result.successful_searches == 5
        assert result.clinical_trials == ()
        assert "ClinicalTrials.gov" not in result.api_sources


class TestDedupe:

    async def test_repeated_records_across_terms_kept_once(self, make_aggregator):
        result = await make_aggregator().analyze("headache headaches")

        assert result.search_attempts == 12
        assert result.successful_searches == 12
        assert len(result.medications) == 4
        assert len(result.clinical_trials) == 3
        keys = [r.key for r in result.medications]
        assert len(keys) == len(set(keys))

    async def test_first_seen_record_wins(self, make_aggregator):
        aggregator = make_aggregator()
        first = MedicationRecord(key="rxcui:1", label="first", source="RxNorm")
        second = MedicationRecord(key="rxcui:1", label="second", source="FHIR")

        result = aggregator.build_result("x", ["x"], [
            SearchOutcome("rxnorm", "x", (first,)),
            SearchOutcome("fhir", "x", (second,)),
        ])

        assert [r.label for r in result.medications] == ["first"]
        assert result.api_sources == ("RxNorm",)
        assert result.successful_searches == 2

    async def test_duplicate_outcomes_do_not_change_categories(self, make_aggregator):
        aggregator = make_aggregator()
        record = MedicationRecord(key="rxcui:1", label="aspirin", source="RxNorm")
        outcome = SearchOutcome("rxnorm", "aspirin", (record,))

        once = aggregator.build_result("aspirin", ["aspirin"], [outcome])
        twice = aggregator.build_result("aspirin", ["aspirin"], [outcome, outcome])

        assert once.category_counts() == twice.category_counts()
        assert once.api_sources == twice.api_sources

    async def test_same_key_in_different_categories_is_kept(self, make_aggregator):
        from services.medical_apis.core import ConditionRecord
        aggregator = make_aggregator()

        result = aggregator.build_result("x", ["x"], [SearchOutcome("fhir", "x", (
            MedicationRecord(key="shared", label="m", source="FHIR"),
            ConditionRecord(key="shared", label="c", source="FHIR"),
        ))])

        assert len(result.medications) == 1
        assert len(result.conditions) == 1


class TestProfile:

    async def test_demographics_add_personalized_call(self, make_aggregator, stub):
        aggregator = make_aggregator()
        result = await aggregator.analyze("I have a headache", {"age": 35, "sex": "female"})

        assert result.search_attempts == 7
        assert result.successful_searches == 7

        request = stub.calls_to(ODPHP, f"{ODPHP_PATH}/myhealthfinder.json")[0]
        assert request.url.params["age"] == "35"
        assert request.url.params["sex"] == "female"
        assert "pregnant" not in request.url.params

        guidance_keys = [g.key for g in result.health_guidance]
        assert "odphp-rec:30" in guidance_keys
        assert "odphp-rec:514" in guidance_keys

    async def test_profile_without_demographics_skips_personalization(self, make_aggregator, stub):
        result = await make_aggregator().analyze("I have a headache", {"tobaccoUse": True})

        assert result.search_attempts == 6
        assert stub.calls_to(ODPHP, f"{ODPHP_PATH}/myhealthfinder.json") == []

    async def test_personalized_failure_counts_as_attempt(self, make_aggregator, stub):
        stub.fail(ODPHP, f"{ODPHP_PATH}/myhealthfinder.json")
        result = await make_aggregator(use_fallback_data=False).analyze(
            "I have a headache", UserProfile(age=50, sex="male")
        )

        assert result.search_attempts == 7
        assert result.successful_searches == 6

    @pytest.mark.parametrize("profile", [
        {"age": "old", "sex": "female"},
        {"age": 35, "sex": "unknown"},
        {"age": 200},
        {"age": 35, "favorite_color": "blue"},
        "35 female",
    ])
    async def test_malformed_profile_rejected(self, make_aggregator, stub, profile):
        with pytest.raises(ValidationError):
            await make_aggregator().analyze("I have a headache", profile)
        assert stub.requests == []

    def test_validate_profile_accepts_aliases(self):
        profile = validate_profile({"age": 30, "sex": "male", "sexuallyActive": True})
        assert profile.sexually_active is True
        assert validate_profile(None) is None


class TestFanOutCap:

    async def test_terms_capped_to_call_budget(self, make_aggregator):
        aggregator = make_aggregator(max_fan_out_calls=12)
        result = await aggregator.analyze("headache fever nausea cough")

        assert result.extracted_terms == ("headache", "fever")
        assert result.search_attempts == 12

    async def test_personalized_call_reserved_within_budget(self, make_aggregator):
        aggregator = make_aggregator(max_fan_out_calls=12)
        result = await aggregator.analyze("headache fever nausea", {"age": 40, "sex": "male"})

        assert result.extracted_terms == ("headache",)
        assert result.search_attempts == 7

    async def test_budget_smaller_than_adapter_count_rejected(self, make_client):
        from services.medical_apis.upstreams import RxNormClient, FHIRClient
        with pytest.raises(ConfigurationError):
            MedicalAggregator([make_client(RxNormClient), make_client(FHIRClient)], max_fan_out_calls=1)

    def test_no_adapters_rejected(self):
        with pytest.raises(ConfigurationError):
            MedicalAggregator([])


class TestAnalysisResult:

    def test_successes_cannot_exceed_attempts(self):
        with pytest.raises(ValueError):
            AnalysisResult(user_message="x", extracted_terms=("x",), search_attempts=1, successful_searches=2)

    def test_negative_counters_rejected(self):
        with pytest.raises(ValueError):
            AnalysisResult(user_message="x", extracted_terms=(), search_attempts=-1)

    async def test_to_dict_shape(self, make_aggregator):
        result = await make_aggregator().analyze("I have a headache")
        data = result.to_dict()

        for category in RecordCategory:
            assert isinstance(data[category.value], list)
        assert data["medications"][0]["kind"] == "medication"
        assert data["medications"][0]["category"] == "medications"
        assert list(data["health_guidance"][0]["categories"]) == ["Pain"]
        assert data["confidence"] == "very_high"

    async def test_confidence_breakdown(self, make_aggregator):
        aggregator = make_aggregator()
        result = await aggregator.analyze("I have a headache")
        breakdown = aggregator.confidence_breakdown(result)

        assert breakdown["label"] == result.confidence
        assert breakdown["points"] == 100.0
        assert breakdown["source_count"] == 6
        assert len(breakdown["populated_categories"]) == 6


class TestDirectLookups:

    async def test_lookup_medication(self, make_aggregator):
        data = await make_aggregator().lookup_medication("aspirin")

        assert data["found"] is True
        assert len(data["rxnorm"]) == 3
        assert data["properties"]["tty"] == "SCD"
        assert [label["label"] for label in data["labels"]] == ["Bayer Aspirin"]
        assert [event["label"] for event in data["adverse_events"]] == ["NAUSEA", "HEADACHE", "RASH"]
        assert data["sources"] == ["RxNorm", "OpenFDA"]

    async def test_lookup_unknown_medication(self, make_aggregator, stub):
        stub.fail(RXNAV)
        stub.fail(OPENFDA)
        data = await make_aggregator(use_fallback_data=False).lookup_medication("notadrug")

        assert data["found"] is False
        assert data["properties"] == {}
        assert data["sources"] == []

    async def test_lookup_survives_malformed_rxnorm_payload(self, make_aggregator, stub):
        stub.json(RXNAV, "/REST/drugs.json", {"drugGroup": {"conceptGroup": [None]}})
        data = await make_aggregator().lookup_medication("aspirin")

        assert data["rxnorm"] == []
        assert data["properties"] == {}
        assert data["found"] is True
        assert data["sources"] == ["OpenFDA"]

    async def test_lookup_requires_name(self, make_aggregator):
        with pytest.raises(ValidationError):
            await make_aggregator().lookup_medication("   ")

    async def test_search_trials_with_filters(self, make_aggregator):
        trials = await make_aggregator().search_trials("headache", statuses=["RECRUITING"])
        assert [t.key for t in trials] == ["NCT00000001"]

    async def test_search_trials_requires_condition(self, make_aggregator):
        with pytest.raises(ValidationError):
            await make_aggregator().search_trials("")

    async def test_search_health_information(self, make_aggregator):
        data = await make_aggregator().search_health_information("headache")

        assert data["topic"] == "headache"
        assert [t["label"] for t in data["health_information"]] == ["Headache", "Migraine"]
        assert len(data["health_guidance"]) == 2

    async def test_lookup_needs_matching_adapter(self, cache):
        aggregator = MedicalAggregator([StaticClient(settings.rxnorm, cache)])
        with pytest.raises(ConfigurationError):
            await aggregator.lookup_medication("aspirin")


class TestStatusAndCache:

    async def test_all_healthy_is_excellent(self, make_aggregator):
        status = await make_aggregator().get_api_status()

        assert status["overall"] == "excellent"
        assert status["healthy_services"] == 6
        assert status["total_services"] == 6
        assert set(status["services"]) == set(ADAPTER_CLASSES)
        assert all(value == 100 for value in status["coverage"].values())

    async def test_one_down_is_good(self, make_aggregator, stub):
        stub.fail(HAPI)
        status = await make_aggregator().get_api_status()

        assert status["overall"] == "good"
        assert status["healthy_services"] == 5
        assert status["coverage"]["drug_database"] == 50
        assert status["coverage"]["condition_database"] == 50

    async def test_everything_down_is_degraded(self, make_aggregator, stub):
        for host in ALL_HOSTS:
            stub.fail(host)
        status = await make_aggregator(use_fallback_data=False).get_api_status()
        assert status["overall"] == "degraded"
        assert status["healthy_services"] == 0

    async def test_repeat_analysis_served_from_cache(self, make_aggregator, stub):
        aggregator = make_aggregator()
        await aggregator.analyze("I have a headache")
        first_round = len(stub.requests)

        await aggregator.analyze("I have a headache")
        assert len(stub.requests) == first_round

    async def test_clear_cache(self, make_aggregator, cache):
        aggregator = make_aggregator()
        await aggregator.analyze("I have a headache")
        cached = len(cache)

        assert cached > 0
        assert aggregator.cache_stats()["total"] == cached
        assert aggregator.clear_cache() == cached
        assert len(cache) == 0
