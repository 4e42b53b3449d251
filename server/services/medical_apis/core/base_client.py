# =============================================================================
# services/medical_apis/core/base_client.py
# =============================================================================

import json
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import httpx

from core.config import UpstreamConfig, settings
from core.exceptions import ExternalAPIError, ResponseParseError
from services.cache import CacheManager
from .rate_limiter import RateLimiter
from .records import UpstreamRecord

logger = logging.getLogger(__name__)

FallbackTable = Mapping[str, List[UpstreamRecord]]

# Raised by parsers walking a payload whose nested elements have the wrong type
PAYLOAD_SHAPE_ERRORS = (KeyError, TypeError, AttributeError, ValueError)


class BaseMedicalAPIClient:
    """
    Shared plumbing for one external medical API
    Cache check -> rate limit -> bounded HTTP GET -> pure parser -> cache write.
    Network, HTTP and parse failures never leave ``search``; the caller gets
    the static fallback entry for the term (or an empty list) instead.
    """

    name: str = "upstream"
    source_tag: str = "Upstream"
    cache_prefix: str = "upstream_"
    health_check_term: str = "aspirin"

    # Static fallback table, keyed by lowercase term
    FALLBACK_TABLE: Dict[str, List[UpstreamRecord]] = {}

    def __init__(self, config: UpstreamConfig, cache: CacheManager,
                 http_client: Optional[httpx.AsyncClient] = None,
                 rate_limiter: Optional[RateLimiter] = None,
                 fallback_table: Optional[FallbackTable] = None,
                 user_agent: Optional[str] = None,
                 no_cache_patterns: Optional[List[str]] = None):
        self.config = config
        self.cache = cache
        self.http_client = http_client
        self.rate_limiter = rate_limiter or RateLimiter(config.requests_per_minute)
        if fallback_table is not None:
            self.fallback_table = fallback_table
        elif settings.use_fallback_data:
            self.fallback_table = self.FALLBACK_TABLE
        else:
            self.fallback_table = {}
        self.user_agent = user_agent or settings.user_agent
        self.no_cache_patterns = settings.no_cache_patterns if no_cache_patterns is None else no_cache_patterns

    # ===== PUBLIC CONTRACT =====

    async def search(self, term: str, skip_cache: bool = False) -> List[UpstreamRecord]:
        """Search this upstream for one term; never raises for upstream failures"""
        raise NotImplementedError

    async def health_check(self) -> Dict:
        """Search the upstream for a known term, bypassing the cache"""
        start = time.monotonic()
        try:
            results = await self.search(self.health_check_term, skip_cache=True)
        except Exception as e:
            return {
                "service": self.source_tag,
                "status": "error",
                "error": str(e),
                "last_checked": datetime.now().isoformat()
            }

        live = [r for r in results if not r.fallback]
        return {
            "service": self.source_tag,
            "status": "healthy" if live else "degraded",
            "response_time_ms": round((time.monotonic() - start) * 1000),
            "results_found": len(results),
            "using_fallback": bool(results) and not live,
            "last_checked": datetime.now().isoformat()
        }

    # ===== CACHED LOOKUP PIPELINE =====

    async def _cached_lookup(self, cache_key: str, ttl_seconds: int,
                             fetch: Callable[[], Awaitable[List[UpstreamRecord]]],
                             term: str, skip_cache: bool = False) -> List[UpstreamRecord]:
        """Run one lookup through cache, rate limiter and fallback handling"""
        cacheable = self._is_cacheable(term)

        if cacheable and not skip_cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"📦 {self.source_tag} cache hit for '{term}'")
                return list(cached)

        try:
            await self.rate_limiter.before_call()
            records = await fetch()
        except (ExternalAPIError, ResponseParseError) as e:
            logger.warning(f"⚠️ {self.source_tag} lookup failed for '{term}': {e.message}")
            return self.fallback_for(term)
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.source_tag} request error for '{term}': {e!r}")
            return self.fallback_for(term)
        except PAYLOAD_SHAPE_ERRORS as e:
            # Well-formed JSON whose nested elements are not the expected shape
            logger.warning(f"⚠️ {self.source_tag} unexpected payload shape for '{term}': {e!r}")
            return self.fallback_for(term)

        if cacheable:
            await self.cache.set(cache_key, list(records), ttl_seconds)

        logger.info(f"🌐 {self.source_tag}: {len(records)} results for '{term}'")
        return records

    def fallback_for(self, term: str) -> List[UpstreamRecord]:
        return list(self.fallback_table.get(term.strip().lower(), []))

    def _is_cacheable(self, term: str) -> bool:
        lowered = term.lower()
        return not any(pattern in lowered for pattern in self.no_cache_patterns)

    def _cache_key(self, *parts: str) -> str:
        return self.cache_prefix + "_".join(p.strip().lower() for p in parts)

    # ===== HTTP =====

    def _headers(self, accept: str = "application/json") -> Dict[str, str]:
        headers = {"User-Agent": self.user_agent, "Accept": accept}
        headers.update(self.config.headers)
        return headers

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None,
                   accept: str = "application/json") -> httpx.Response:
        """Issue one GET with this upstream's timeout; non-2xx raises ExternalAPIError"""
        headers = self._headers(accept)
        timeout = self.config.timeout_seconds

        if self.http_client is not None:
            response = await self.http_client.get(url, params=params, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.get(url, params=params, headers=headers, timeout=timeout)

        if not response.is_success:
            raise ExternalAPIError(
                f"{self.source_tag} API error: {response.status_code}",
                api_name=self.name,
                status_code=response.status_code
            )
        return response

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                        accept: str = "application/json") -> Any:
        response = await self._get(url, params=params, accept=accept)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ResponseParseError(f"{self.source_tag} returned invalid JSON: {e}", api_name=self.name)
