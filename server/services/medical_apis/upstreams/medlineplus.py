# =============================================================================
# services/medical_apis/upstreams/medlineplus.py
# =============================================================================

import json
import logging
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from core.exceptions import ResponseParseError
from ..core.base_client import BaseMedicalAPIClient
from ..core.records import HealthTopicRecord, clean_markup, truncate

logger = logging.getLogger(__name__)

SOURCE = "MedlinePlus"
DEFAULT_URL = "https://medlineplus.gov"
SUMMARY_LIMIT = 500
MAX_DOCUMENTS = 3

DOCUMENT_PATTERN = re.compile(r"<document([^>]*)>(.*?)</document>", re.DOTALL | re.IGNORECASE)
URL_ATTR_PATTERN = re.compile(r'url=["\']([^"\']+)["\']')
SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _topic_record(title: str, summary: str, url: Optional[str], topic: str,
                  last_revised: Optional[str] = None) -> HealthTopicRecord:
    url = url or DEFAULT_URL
    key = url if url != DEFAULT_URL else f"medlineplus:{title.lower()}"
    return HealthTopicRecord(
        key=key,
        label=title or f"{topic} Information",
        source=SOURCE,
        summary=truncate(summary or f"Health information about {topic} from MedlinePlus", SUMMARY_LIMIT),
        url=url,
        last_revised=last_revised
    )


# ===== JSON =====

def parse_health_topics_json(data: Dict, topic: str) -> List[HealthTopicRecord]:
    if not isinstance(data, dict):
        raise ResponseParseError("MedlinePlus JSON payload is not an object", api_name="medlineplus")

    documents = ((data.get("nlmSearchResult") or {}).get("list") or {}).get("document") or []
    if isinstance(documents, dict):
        documents = [documents]

    records = []
    for doc in documents[:MAX_DOCUMENTS]:
        content = doc.get("content") or {}
        records.append(_topic_record(
            clean_markup(content.get("title")),
            clean_markup(content.get("summary") or content.get("FullSummary")),
            content.get("url") or doc.get("url"),
            topic,
            content.get("lastRevised")
        ))
    return records


# ===== XML =====

def parse_health_topics_xml(text: str, topic: str) -> List[HealthTopicRecord]:
    """Structured pass over ``<document url><content name=...>`` elements"""
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        logger.debug(f"MedlinePlus XML not well-formed: {e}")
        return []

    records = []
    for document in root.iter("document"):
        fields = {}
        for content in document.iter("content"):
            name = content.get("name")
            if name and name not in fields:
                fields[name] = clean_markup("".join(content.itertext()))

        title = fields.get("title")
        if not title:
            continue
        summary = fields.get("FullSummary") or fields.get("snippet") or ""
        records.append(_topic_record(title, summary, document.get("url"), topic))

        if len(records) >= MAX_DOCUMENTS:
            break

    return records


def _content_field(block: str, *names: str) -> Optional[str]:
    for name in names:
        match = (re.search(rf'<content[^>]*name=["\']{name}["\'][^>]*>(.*?)</content>', block, re.DOTALL)
                 or re.search(rf"<{name}[^>]*>(.*?)</{name}>", block, re.DOTALL | re.IGNORECASE))
        if match:
            return clean_markup(match.group(1))
    return None


def extract_text_fallback(text: str, topic: str) -> List[HealthTopicRecord]:
    """
    Permissive pass for markup the XML parser rejects
    Tries raw ``<document>`` blocks first, then any sentences mentioning the topic.
    """
    records = []
    for attrs, block in DOCUMENT_PATTERN.findall(text)[:MAX_DOCUMENTS]:
        title = _content_field(block, "title")
        if not title:
            continue
        url_match = URL_ATTR_PATTERN.search(attrs) or URL_ATTR_PATTERN.search(block)
        summary = _content_field(block, "FullSummary", "snippet", "summary", "abstract")
        records.append(_topic_record(title, summary, url_match.group(1) if url_match else None, topic))

    if records:
        return records

    plain = clean_markup(text)
    lowered_topic = topic.lower()
    sentences = [
        s.strip() for s in SENTENCE_SPLIT.split(plain)
        if lowered_topic in s.lower() and len(s.strip()) > 20
    ]
    if not sentences:
        return []

    summary = ". ".join(sentences[:2]) + "."
    return [HealthTopicRecord(
        key=f"medlineplus-text:{lowered_topic}",
        label=f"{topic} Information",
        source=SOURCE,
        summary=truncate(summary, SUMMARY_LIMIT),
        url=DEFAULT_URL
    )]


def parse_health_topics(text: str, content_type: str, topic: str) -> List[HealthTopicRecord]:
    """Dispatch on payload shape: JSON when declared and parseable, XML otherwise"""
    stripped = text.lstrip()
    if "json" in (content_type or "").lower() and not stripped.startswith("<"):
        try:
            return parse_health_topics_json(json.loads(stripped), topic)
        except (json.JSONDecodeError, ResponseParseError) as e:
            logger.warning(f"⚠️ MedlinePlus JSON unusable ({e}), trying markup parsers")

    return parse_health_topics_xml(stripped, topic) or extract_text_fallback(stripped, topic)


def _fallback_topic(topic: str, title: str, summary: str, url: str) -> List[HealthTopicRecord]:
    return [HealthTopicRecord(
        key=f"{topic.replace(' ', '-')}-fallback",
        label=title,
        source="MedlinePlus-Fallback",
        fallback=True,
        summary=summary,
        url=url
    )]


class MedlinePlusClient(BaseMedicalAPIClient):
    """MedlinePlus health topic search (NLM web service)"""

    name = "medlineplus"
    source_tag = SOURCE
    cache_prefix = "medlineplus_"
    health_check_term = "headache"

    FALLBACK_TABLE = {
        "headache": _fallback_topic(
            "headache", "Headache",
            "Headaches are very common and can range from mild to severe. Most headaches are tension "
            "headaches caused by stress, poor posture, or muscle tension. Migraines are more severe and "
            "often include nausea and light sensitivity. Treatment typically includes rest, hydration, "
            "and over-the-counter pain relievers.",
            "https://medlineplus.gov/headache.html"
        ),
        "fever": _fallback_topic(
            "fever", "Fever",
            "A fever is a body temperature above 100.4°F (38°C). Fever is usually a sign that your body "
            "is fighting an infection. Most fevers are caused by viral or bacterial infections. Treatment "
            "includes rest, fluids, and fever-reducing medications like acetaminophen or ibuprofen.",
            "https://medlineplus.gov/fever.html"
        ),
        "nausea": _fallback_topic(
            "nausea", "Nausea and Vomiting",
            "Nausea is the feeling that you need to vomit. It can be caused by many things including "
            "motion sickness, food poisoning, pregnancy, medications, or infections. Treatment includes "
            "staying hydrated, eating bland foods, and avoiding strong odors.",
            "https://medlineplus.gov/nauseaandvomiting.html"
        ),
        "chest pain": _fallback_topic(
            "chest pain", "Chest Pain",
            "Chest pain can have many causes, from minor muscle strain to serious heart problems. It may "
            "feel sharp, dull, burning, or crushing. Chest pain with shortness of breath, sweating, or "
            "nausea requires immediate medical attention.",
            "https://medlineplus.gov/chestpain.html"
        ),
        "cough": _fallback_topic(
            "cough", "Cough",
            "Coughing helps clear your airways of mucus and irritants. Acute coughs last less than 3 weeks "
            "and are often caused by colds or flu. Chronic coughs lasting more than 8 weeks may indicate "
            "underlying conditions like asthma or acid reflux.",
            "https://medlineplus.gov/cough.html"
        ),
    }

    async def search(self, term: str, skip_cache: bool = False) -> List[HealthTopicRecord]:
        async def fetch():
            params = {
                "db": "healthTopics",
                "term": term,
                "knowledgeResponseType": "application/json",
            }
            response = await self._get(
                self.config.endpoint("query"), params=params,
                accept="application/json, text/xml, text/html"
            )
            topics = parse_health_topics(response.text, response.headers.get("content-type", ""), term)
            if not topics:
                # Nothing usable; fall back without caching an empty result
                raise ResponseParseError(f"No MedlinePlus topics parsed for '{term}'", api_name=self.name)
            return topics

        return await self._cached_lookup(
            self._cache_key(term), self.config.cache_ttl_seconds, fetch, term, skip_cache
        )
