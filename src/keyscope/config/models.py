"""Settings schema for keyscope."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator


class ConnectionSettings(BaseModel):
    """Descriptor used to open (and re-open) the store connection."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=6379, ge=1, le=65535)
    db: int = Field(default=0, ge=0, description="Initial logical namespace index")
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)
    use_ssl: bool = Field(default=False)
    max_connections: int = Field(default=8, ge=1, le=1024)
    connect_timeout_s: float = Field(default=5.0, gt=0)

    def describe(self) -> str:
        scheme = "rediss" if self.use_ssl else "redis"
        return f"{scheme}://{self.host}:{self.port}/{self.db}"


class ExecutorSettings(BaseModel):
    metadata_timeout_s: float = Field(default=2.0, gt=0, description="Timeout for metadata commands")
    scan_timeout_s: float | None = Field(default=None, description="Timeout for SCAN/KEYS; unlimited when unset")
    retries: int = Field(default=2, ge=0, le=10, description="Retries after a transient failure")
    backoff_base_s: float = Field(default=0.1, ge=0)
    backoff_max_s: float = Field(default=2.0, ge=0)
    dbsize_timeout_s: float = Field(default=2.0, gt=0)
    dbsize_retries: int = Field(default=3, ge=0, le=10)

    @field_validator("scan_timeout_s")
    @classmethod
    def validate_scan_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            return None
        return value


class ScanSettings(BaseModel):
    count_per_batch: int = Field(default=200, ge=1, description="COUNT hint sent with each SCAN")
    concurrency: int = Field(default=4, ge=1, le=64, description="Patterns scanned in the same tick")
    throttle_ms: int = Field(default=25, ge=0, description="Delay between scheduling ticks")
    hard_cap: int = Field(default=50_000, ge=1, description="Maximum keys held by one session")
    auto_continue: bool = Field(default=True)
    local_filter_enabled: bool = Field(default=False)
    safe_fallback_threshold: int = Field(default=1000, ge=0, description="Largest keyspace allowed a KEYS fallback")
    flush_interval_ms: int = Field(default=120, ge=0)


class TreeSettings(BaseModel):
    separator: str = Field(default=":")


class AppearanceSettings(BaseModel):
    theme: str = Field(default="textual-dark", description="Textual theme name")


class AppSettings(BaseModel):
    schema_version: int = Field(default=1)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    tree: TreeSettings = Field(default_factory=TreeSettings)
    appearance: AppearanceSettings = Field(default_factory=AppearanceSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten key/value pairs, hiding secrets."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, dict):
                for key, nested in value.items():
                    walk(f"{prefix}.{key}" if prefix else key, nested)
            elif prefix.endswith("password") and value:
                result.append((prefix, "********"))
            else:
                result.append((prefix, str(value)))

        walk("", self.model_dump())
        return result
