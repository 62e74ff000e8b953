"""
Runtime configuration for Neptune.

Values come from the environment (optionally a .env file) and fall back to
the defaults below.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

__version__ = "1.0.0"

PACKAGE_DIR = Path(__file__).resolve().parent

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:147.0) Gecko/20100101 Firefox/147.0"
)


@dataclass
class NeptuneConfig:
    """Neptune configuration"""
    # HTTP server
    port: int = 8080
    use_https: bool = False
    cert_dir: str = "certs"

    # Aggregation
    feed_months_back: int = 12
    aggregation_interval_minutes: int = 15
    aggregation_concurrency: int = 5
    user_agent: str = DEFAULT_USER_AGENT
    feed_http_timeout_ms: int = 10000
    description_max_length: int = 1000

    # Search
    search_batch_size: int = 10
    search_timeout_seconds: float = 30.0
    parsed_feed_cache_size: int = 50

    # Paths
    cache_dir: str = "cache"
    output_dir: str = "output"
    opml_file: str = "feeds.opml"
    template_dir: str = field(default_factory=lambda: str(PACKAGE_DIR / "templates"))
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def feed_http_timeout_seconds(self) -> float:
        return self.feed_http_timeout_ms / 1000.0


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def load_config() -> NeptuneConfig:
    """Load configuration from environment and .env file"""
    load_dotenv()
    defaults = NeptuneConfig()
    return NeptuneConfig(
        port=_env_int('PORT', defaults.port),
        use_https=(os.getenv('USE_HTTPS', 'false').lower() == 'true'),
        cert_dir=os.getenv('CERT_DIR', defaults.cert_dir),
        feed_months_back=_env_int('FEED_MONTHS_BACK', defaults.feed_months_back),
        aggregation_interval_minutes=_env_int('AGGREGATION_INTERVAL_MINUTES', defaults.aggregation_interval_minutes),
        aggregation_concurrency=_env_int('AGGREGATION_CONCURRENCY', defaults.aggregation_concurrency),
        user_agent=os.getenv('FEED_USER_AGENT', defaults.user_agent),
        feed_http_timeout_ms=_env_int('FEED_HTTP_TIMEOUT_MS', defaults.feed_http_timeout_ms),
        description_max_length=_env_int('DESCRIPTION_MAX_LENGTH', defaults.description_max_length),
        search_batch_size=_env_int('SEARCH_BATCH_SIZE', defaults.search_batch_size),
        search_timeout_seconds=float(os.getenv('SEARCH_TIMEOUT_SECONDS', str(defaults.search_timeout_seconds))),
        parsed_feed_cache_size=_env_int('PARSED_FEED_CACHE_SIZE', defaults.parsed_feed_cache_size),
        cache_dir=os.getenv('CACHE_DIR', defaults.cache_dir),
        output_dir=os.getenv('OUTPUT_DIR', defaults.output_dir),
        opml_file=os.getenv('OPML_FILE', defaults.opml_file),
        template_dir=os.getenv('TEMPLATE_DIR', defaults.template_dir),
        log_dir=os.getenv('LOG_DIR', defaults.log_dir),
        log_level=os.getenv('LOG_LEVEL', defaults.log_level),
        log_format=os.getenv('LOG_FORMAT', defaults.log_format).lower(),
    )
