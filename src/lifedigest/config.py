"""Application configuration defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

from lifedigest.embedding.encoder import DEFAULT_MODEL

ENV_PREFIX = "LIFEDIGEST_"


def _get_default_data_root() -> Path:
    """Get the default data root based on the execution context."""
    # When running from a checkout, prefer local data/ if it exists
    local_root = Path("data")
    if local_root.exists():
        return local_root
    return Path.home() / "Documents" / "LifeDigest"


def default_db_path(data_root: Path) -> Path:
    return Path(data_root) / ".lifedigest" / "lifedigest.db"


@dataclass(slots=True)
class AppConfig:
    data_root: Path | None = None
    db_path: Path | None = None
    model_name: str = DEFAULT_MODEL

    # Chunking
    target_tokens: int = 900
    overlap_percent: float = 0.15

    # Worker timings, in seconds
    start_delay: float = 3.0
    idle_sleep: float = 1.0
    failure_base_delay: float = 5.0
    failure_max_delay: float = 60.0
    stale_digest_threshold: float = 600.0
    stale_sweep_interval: float = 60.0
    stale_lock_threshold: float = 300.0
    shutdown_grace: float = 5.0

    max_attempts: int = 3
    excluded_path_prefixes: tuple[str, ...] = field(default_factory=lambda: (".lifedigest/",))

    # OpenAI-compatible completion endpoint
    openai_base_url: str | None = None
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"

    # HAID vision/speech service
    haid_base_url: str | None = None
    haid_api_key: str | None = None

    vendor_timeout: float = 120.0

    def __post_init__(self) -> None:
        if self.data_root is None:
            self.data_root = _get_default_data_root()
        if self.db_path is None:
            self.db_path = default_db_path(self.data_root)

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = default_db_path(self.data_root or _get_default_data_root())
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides) -> "AppConfig":
        """Create config from ``LIFEDIGEST_*`` environment variables.

        Every field can be set through its upper-cased name, for example
        ``LIFEDIGEST_DATA_ROOT`` or ``LIFEDIGEST_FAILURE_MAX_DELAY``. Keyword
        overrides that are not None win over the environment.
        """
        environ = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for item in fields(cls):
            raw = environ.get(ENV_PREFIX + item.name.upper())
            if raw is None or raw == "":
                continue
            values[item.name] = _coerce(item.name, raw)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


_PATH_FIELDS = {"data_root", "db_path"}
_INT_FIELDS = {"target_tokens", "max_attempts"}
_FLOAT_FIELDS = {
    "overlap_percent",
    "start_delay",
    "idle_sleep",
    "failure_base_delay",
    "failure_max_delay",
    "stale_digest_threshold",
    "stale_sweep_interval",
    "stale_lock_threshold",
    "shutdown_grace",
    "vendor_timeout",
}


def _coerce(name: str, raw: str) -> object:
    if name in _PATH_FIELDS:
        return Path(raw).expanduser()
    if name in _INT_FIELDS:
        return int(raw)
    if name in _FLOAT_FIELDS:
        return float(raw)
    if name == "excluded_path_prefixes":
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    return raw
