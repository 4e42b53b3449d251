# core/config.py

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, field_validator
from typing import Dict, Optional, List


class UpstreamConfig(BaseModel):
    """Connection, quota and cache settings for one external medical API"""

    base_url: str
    endpoints: Dict[str, str] = {}
    requests_per_minute: int
    timeout_seconds: float = 8.0
    cache_ttl_seconds: int = 3600
    # Second lookup kind on the same upstream (OpenFDA labels, ODPHP recommendations)
    secondary_ttl_seconds: Optional[int] = None
    headers: Dict[str, str] = {}

    @field_validator("requests_per_minute")
    @classmethod
    def validate_quota(cls, v):
        if v <= 0:
            raise ValueError("requests_per_minute must be positive")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("timeout_seconds must be positive")
        return v

    @field_validator("cache_ttl_seconds", "secondary_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v):
        if v is not None and v <= 0:
            raise ValueError("Cache TTL must be positive")
        return v

    @property
    def request_delay(self) -> float:
        """Minimum seconds between two calls to this upstream"""
        return 60.0 / self.requests_per_minute

    def endpoint(self, name: str, **path_params) -> str:
        """Build the absolute URL for a named endpoint template"""
        path = self.endpoints[name].format(**path_params)
        return f"{self.base_url}{path}"


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    # Application settings
    app_name: str = "Healthbot Medical Aggregator"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"  # development, staging, production

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = True

    # CORS settings
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:8080"]

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Outbound request identity
    user_agent: str = "Healthcare-Chatbot/1.0"

    # Aggregation settings
    max_search_terms: int = 10
    max_fan_out_calls: int = 100
    max_message_length: int = 1000
    use_fallback_data: bool = True

    # Cache settings
    cache_max_entries: int = 1000
    cache_sweep_interval_seconds: int = 1800  # 30 minutes
    no_cache_patterns: List[str] = ["emergency", "urgent", "patient_specific"]

    # Session settings
    session_history_limit: int = 10

    # External API settings
    rxnorm: UpstreamConfig = UpstreamConfig(
        base_url="https://rxnav.nlm.nih.gov/REST",
        endpoints={
            "drugs": "/drugs.json",
            "properties": "/rxcui/{rxcui}/properties.json",
        },
        requests_per_minute=20,
        timeout_seconds=5.0,
        cache_ttl_seconds=3600,  # 1 hour - drug info doesn't change often
    )
    fhir: UpstreamConfig = UpstreamConfig(
        base_url="https://hapi.fhir.org/baseR4",
        endpoints={"search": "/"},
        requests_per_minute=10,
        timeout_seconds=8.0,
        cache_ttl_seconds=1800,  # 30 minutes - test server data
        headers={"Accept": "application/fhir+json"},
    )
    clinical_trials: UpstreamConfig = UpstreamConfig(
        base_url="https://clinicaltrials.gov/api/v2",
        endpoints={"studies": "/studies"},
        requests_per_minute=15,
        timeout_seconds=10.0,
        cache_ttl_seconds=7200,  # 2 hours - trial data updates slowly
    )
    medlineplus: UpstreamConfig = UpstreamConfig(
        base_url="https://wsearch.nlm.nih.gov/ws",
        endpoints={"query": "/query"},
        requests_per_minute=10,
        timeout_seconds=8.0,
        cache_ttl_seconds=86400,  # 24 hours
        headers={"Accept": "application/json, text/xml, text/html"},
    )
    openfda: UpstreamConfig = UpstreamConfig(
        base_url="https://api.fda.gov",
        endpoints={"events": "/drug/event.json", "labels": "/drug/label.json"},
        requests_per_minute=8,
        timeout_seconds=8.0,
        cache_ttl_seconds=7200,  # adverse events
        secondary_ttl_seconds=86400,  # labels
    )
    odphp: UpstreamConfig = UpstreamConfig(
        base_url="https://odphp.health.gov/myhealthfinder/api/v4",
        endpoints={
            "topics": "/itemlist.json",
            "topic_details": "/topicsearch.json",
            "recommendations": "/myhealthfinder.json",
        },
        requests_per_minute=20,
        timeout_seconds=8.0,
        cache_ttl_seconds=86400,  # topics
        secondary_ttl_seconds=7200,  # personalized recommendations
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v):
        """Ensure CORS origins are properly formatted"""
        if isinstance(v, str):
            return [v]
        return v

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting"""
        allowed_envs = ["development", "staging", "production", "test"]
        if v not in allowed_envs:
            raise ValueError(f"Environment must be one of: {allowed_envs}")
        return v

    @field_validator("max_search_terms", "max_fan_out_calls", "cache_max_entries")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Limits must be positive")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )


# Global settings instance
settings = Settings()
