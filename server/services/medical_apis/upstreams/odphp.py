# =============================================================================
# services/medical_apis/upstreams/odphp.py
# =============================================================================

import asyncio
import logging
from typing import Dict, List, Optional

import httpx

from core.exceptions import ExternalAPIError, ResponseParseError
from ..core.base_client import PAYLOAD_SHAPE_ERRORS, BaseMedicalAPIClient
from ..core.profile import UserProfile
from ..core.records import GuidanceRecord, clean_markup, truncate

logger = logging.getLogger(__name__)

SOURCE = "MyHealthfinder"
FALLBACK_SOURCE = "MyHealthfinder-Fallback"
SUMMARY_LIMIT = 300
MAX_DETAILED_TOPICS = 3

# Fallback table slot for the personalized lookup, which has no search term
RECOMMENDATIONS_KEY = "myhealthfinder:recommendations"


# ===== PAYLOAD HELPERS =====

def _resources(data: Dict) -> List[Dict]:
    """Resource list from either the v4 ``Resources.all`` shape or the flat one"""
    if not isinstance(data, dict):
        raise ResponseParseError("MyHealthfinder payload is not an object", api_name="odphp")

    result = data.get("Result") or {}
    resources = result.get("Resources") or {}
    items = (resources.get("Resource")
             or (resources.get("all") or {}).get("Resource")
             or (result.get("Items") or {}).get("Item")
             or [])
    return [items] if isinstance(items, dict) else list(items)


def _category_names(resource: Dict) -> List[str]:
    categories = resource.get("Categories")
    if isinstance(categories, str):
        return [c.strip() for c in categories.split(",") if c.strip()]
    category = (categories or {}).get("Category") or []
    if isinstance(category, dict):
        category = [category]
    return [c.get("Name") for c in category if c.get("Name")]


def _sections(resource: Dict) -> List[Dict]:
    sections = resource.get("Sections") or {}
    section = sections.get("section") or sections.get("Section") or []
    return [section] if isinstance(section, dict) else list(section)


def extract_summary(sections: List[Dict]) -> str:
    for section in sections:
        if section.get("Title") and section.get("Description"):
            return truncate(clean_markup(section["Description"]), SUMMARY_LIMIT)
    return "Health information available"


def _guidance_record(resource: Dict, item_type: str, key_prefix: str) -> GuidanceRecord:
    return GuidanceRecord(
        key=f"{key_prefix}:{resource.get('Id')}",
        label=resource.get("Title") or "Health topic",
        source=SOURCE,
        summary=extract_summary(_sections(resource)),
        url=resource.get("AccessibleVersion"),
        item_type=item_type,
        categories=tuple(_category_names(resource))
    )


# ===== PARSERS =====

def filter_topics(data: Dict, keyword: str) -> List[Dict]:
    """Topics whose title or a category mentions the keyword, title matches first"""
    keyword = keyword.lower()
    matches = []

    for resource in _resources(data):
        title = (resource.get("Title") or "").lower()
        categories = [c.lower() for c in _category_names(resource)]
        in_title = keyword in title
        if in_title or any(keyword in c for c in categories):
            matches.append((0 if in_title else 1, resource))

    # Stable sort keeps upstream order within each relevance band
    matches.sort(key=lambda m: m[0])
    return [resource for _, resource in matches]


def parse_topic_details(data: Dict) -> Optional[GuidanceRecord]:
    resources = _resources(data)
    if not resources:
        return None
    return _guidance_record(resources[0], "topic", "odphp-topic")


def parse_recommendations(data: Dict) -> List[GuidanceRecord]:
    return [
        _guidance_record(resource, (resource.get("Type") or "recommendation").lower(), "odphp-rec")
        for resource in _resources(data)
    ]


def _fallback_guidance(key: str, title: str, summary: str, item_type: str = "topic",
                       categories=()) -> List[GuidanceRecord]:
    return [GuidanceRecord(
        key=key,
        label=title,
        source=FALLBACK_SOURCE,
        fallback=True,
        summary=summary,
        item_type=item_type,
        categories=tuple(categories)
    )]


class ODPHPClient(BaseMedicalAPIClient):
    """ODPHP MyHealthfinder - preventive topics and personalized recommendations"""

    name = "odphp"
    source_tag = SOURCE
    cache_prefix = "odphp_"
    health_check_term = "nutrition"

    FALLBACK_TABLE = {
        "headache": _fallback_guidance(
            "headache-fallback", "Managing Headaches",
            "Learn about different types of headaches and when to seek medical care. Most headaches "
            "can be managed with rest, hydration, and appropriate pain relief."
        ),
        "fever": _fallback_guidance(
            "fever-fallback", "Understanding Fever",
            "Fever is your body's natural response to infection. Learn when fever requires medical "
            "attention and how to manage it safely."
        ),
        "nutrition": _fallback_guidance(
            "nutrition-fallback", "Healthy Eating Guidelines",
            "Follow the Dietary Guidelines for Americans to maintain a healthy diet with plenty of "
            "fruits, vegetables, whole grains, and lean proteins."
        ),
        RECOMMENDATIONS_KEY: _fallback_guidance(
            "general-rec", "General Health Recommendations",
            "Maintain a healthy lifestyle with regular exercise, balanced nutrition, adequate sleep, "
            "and routine healthcare visits.",
            item_type="general", categories=["Prevention"]
        ),
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        # Concurrent searches on a cold cache share one item-list fetch
        self._index_lock = asyncio.Lock()

    async def search(self, term: str, skip_cache: bool = False) -> List[GuidanceRecord]:
        async def fetch():
            index = await self._topic_index(skip_cache)
            matches = filter_topics(index, term)[:MAX_DETAILED_TOPICS]
            return [await self._topic_with_details(resource) for resource in matches]

        return await self._cached_lookup(
            self._cache_key("topics", term), self.config.cache_ttl_seconds, fetch, term, skip_cache
        )

    async def get_personalized_recommendations(self, profile: UserProfile,
                                               skip_cache: bool = False) -> List[GuidanceRecord]:
        params = profile.to_query_params()

        async def fetch():
            data = await self._get_json(self.config.endpoint("recommendations"), params=params)
            return parse_recommendations(data)

        cache_key = self._cache_key("recommendations", *(f"{k}={v}" for k, v in sorted(params.items())))
        ttl = self.config.secondary_ttl_seconds or self.config.cache_ttl_seconds
        return await self._cached_lookup(cache_key, ttl, fetch, RECOMMENDATIONS_KEY, skip_cache)

    # ===== TOPIC INDEX & DETAILS =====

    async def _topic_index(self, skip_cache: bool = False) -> Dict:
        """Full topic item list, cached on its own since every search filters the same list"""
        cache_key = self._cache_key("itemlist")
        async with self._index_lock:
            if not skip_cache:
                cached = await self.cache.get(cache_key)
                if cached is not None:
                    return cached

            data = await self._get_json(self.config.endpoint("topics"), params={"Type": "topic"})
            _resources(data)  # rejects non-object payloads before they are cached
            await self.cache.set(cache_key, data, self.config.cache_ttl_seconds)
            return data

    async def _topic_with_details(self, resource: Dict) -> GuidanceRecord:
        """Detailed record for one topic; the item-list entry alone when details fail"""
        topic_id = resource.get("Id")
        cache_key = self._cache_key("topic", str(topic_id))

        cached = await self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            await self.rate_limiter.before_call()
            data = await self._get_json(self.config.endpoint("topic_details"), params={"TopicId": topic_id})
            record = parse_topic_details(data)
        except (ExternalAPIError, ResponseParseError) as e:
            logger.warning(f"⚠️ MyHealthfinder details failed for topic {topic_id}: {e.message}")
            record = None
        except httpx.HTTPError as e:
            logger.warning(f"⚠️ MyHealthfinder details error for topic {topic_id}: {e!r}")
            record = None
        except PAYLOAD_SHAPE_ERRORS as e:
            logger.warning(f"⚠️ MyHealthfinder details malformed for topic {topic_id}: {e!r}")
            record = None

        if record is None:
            return _guidance_record(resource, "topic", "odphp-topic")

        await self.cache.set(cache_key, record, self.config.cache_ttl_seconds)
        return record
