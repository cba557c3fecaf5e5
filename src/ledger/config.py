"""Service configuration read from LEDGER_* environment variables."""
from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Ledger service settings.

    Attributes:
        host: Bind address for the API server.
        port: Port number for the API server.
        debug: Console logs, DEBUG level and the OpenAPI docs.
        cors_origins_raw: Comma-separated CORS origins.
        key: API key required on every non-health request; empty disables auth.
        database_path: SQLite file of the record store (":memory:" for tests).
        default_currency: Currency given to transactions that omit one.
        search_debounce_ms: Quiet period before a session query executes.
        search_result_limit: Index matches consumed per query.
        search_max_sessions: Debounced search sessions kept before LRU eviction.
        search_index_enabled: Search the FTS index before the content filter.
        search_purge_interval: Seconds between expired index entry purges.
        event_queue_size: Per-subscriber queue length for change events.
        event_max_subscribers: Concurrent SSE subscribers allowed.
        sse_heartbeat_interval: Seconds between SSE heartbeats.
    """

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    cors_origins_raw: str = "http://localhost:3000"
    key: str = ""

    database_path: str = ":memory:"
    default_currency: str = "CAD"

    search_debounce_ms: int = Field(default=300, ge=0)
    search_result_limit: int = Field(default=200, ge=1)
    search_max_sessions: int = Field(default=256, ge=1)
    search_index_enabled: bool = True
    search_purge_interval: float = Field(default=3600.0, gt=0)

    event_queue_size: int = Field(default=100, ge=1)
    event_max_subscribers: int = Field(default=100, ge=1)
    sse_heartbeat_interval: float = Field(default=15.0, gt=0)

    @field_validator("default_currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError(f"default_currency must be a three-letter code, got {value!r}")
        return code

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Allowed CORS origins, blanks dropped."""
        return [o.strip() for o in self.cors_origins_raw.split(",") if o.strip()]
