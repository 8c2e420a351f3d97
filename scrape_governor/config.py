from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # App
    app_name: str = "Scrape Governor"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    log_file: Optional[str] = "data/governor.log"

    # Database
    database_url: str = "sqlite:///data/scrape_governor.db"

    # LLM (selector healing)
    llm_provider: str = "openai"  # "claude", "openai", or "ollama"
    anthropic_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    llm_model: Optional[str] = None
    llm_vision_model: Optional[str] = None
    ollama_base_url: str = "http://localhost:11434"
    llm_timeout_seconds: float = 60.0
    heal_html_max_chars: int = 80_000
    heal_selector_max_length: int = 500

    # Browser
    # Hub sessions run unattended
    browser_headless: bool = True
    default_user_agent: str = (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    use_camoufox: bool = False
    camoufox_executable_path: Optional[str] = None

    # Session vault
    encryption_key: Optional[str] = None
    session_ttl_days: int = 7

    # Business hours (local to each hub)
    business_start_hour: int = 9
    business_end_hour: int = 18

    # Rhythm
    jitter_min_ms: int = 1200
    jitter_max_ms: int = 4500

    # Rate limiting per source
    rate_limit_max_requests: int = 12
    rate_limit_window_seconds: float = 60.0

    # Bot score (Fingerprint Server API)
    fingerprint_api_key: Optional[str] = None
    fingerprint_api_region: str = "us"
    fingerprint_last_request_id: Optional[str] = None
    bot_score_threshold_pct: int = 10

    # Proxies
    proxy_default: Optional[str] = None
    proxy_alt_default: Optional[str] = None
    proxy_username: Optional[str] = None
    proxy_password: Optional[str] = None
    hub_proxies: dict[str, str] = {}
    hub_alt_proxies: dict[str, str] = {}

    # Enrichment providers
    phantombuster_api_key: Optional[str] = None
    phantombuster_search_agent_id: Optional[str] = None
    phantombuster_max_wait_seconds: float = 120.0
    phantombuster_poll_seconds: float = 5.0
    proxycurl_api_key: Optional[str] = None
    enrichment_timeout_seconds: float = 150.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 300.0

    # Tracing (Phoenix / any OTLP HTTP collector)
    otlp_endpoint: Optional[str] = None
    trace_buffer_size: int = 100
    trace_service_name: str = "scrape-governor"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
