from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PREFIX = "LINK_SHELF_"
DEFAULT_DATA_DIR = Path(".link-shelf")
DEFAULT_USER_AGENT = "link-shelf/0.1"
TELEMETRY_SINKS: tuple[str, ...] = ("none", "log")

# Fields whose default lives under `data_dir` unless set explicitly.
_DATA_DIR_CHILDREN: dict[str, Path] = {
    "db_path": Path("links.db"),
    "log_dir": Path("logs"),
}
_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


def coerce_flag(value: Any, *, default: bool) -> bool:
    """Lenient boolean parsing; anything unrecognised keeps `default`."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        token = value.strip().lower()
        if token in _TRUTHY:
            return True
        if token in _FALSY:
            return False
    return default


def _under_data_dir(field_name: str) -> str:
    return (
        f"Defaults to `${{{ENV_PREFIX}DATA_DIR}}/{_DATA_DIR_CHILDREN[field_name]}` "
        "when not explicitly set."
    )


class AppSettings(BaseSettings):
    """Runtime configuration, read from `LINK_SHELF_*` variables or `.env`."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR,
        description="Runtime directory holding the link database and logs.",
    )
    db_path: Path = Field(
        default=DEFAULT_DATA_DIR / _DATA_DIR_CHILDREN["db_path"],
        description=f"SQLite database file. {_under_data_dir('db_path')}",
    )
    log_dir: Path = Field(
        default=DEFAULT_DATA_DIR / _DATA_DIR_CHILDREN["log_dir"],
        description=f"Directory for JSON log files. {_under_data_dir('log_dir')}",
    )
    log_level: str = Field(default="INFO", description="Console (stdout) log level.")

    metadata_fetch_enabled: bool = Field(
        default=True,
        description="Fetch linked pages for metadata; when off, metadata comes from the URL.",
    )
    metadata_fetch_timeout_ms: int = Field(
        default=5_000,
        ge=100,
        le=60_000,
        description="Budget for one page fetch, connection and body included.",
    )
    metadata_fetch_max_bytes: int = Field(
        default=2 * 1024 * 1024,
        ge=1024,
        description="Bytes of page body read before the rest is ignored.",
    )
    metadata_user_agent: str = Field(
        default=DEFAULT_USER_AGENT,
        description="User-Agent header sent with page fetches.",
    )

    telemetry_enabled: bool = Field(default=True, description="Emit internal telemetry events.")
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description="`log` writes events to the telemetry log file; `none` drops them.",
    )

    @field_validator("metadata_fetch_enabled", "telemetry_enabled", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any, info: ValidationInfo) -> bool:
        assert info.field_name is not None
        default = cls.model_fields[info.field_name].default
        return coerce_flag(value, default=bool(default))

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _check_telemetry_sink(cls, value: Any) -> str:
        token = value.strip().lower() if isinstance(value, str) else ""
        if token not in TELEMETRY_SINKS:
            raise ValueError(
                f"{ENV_PREFIX}TELEMETRY_SINK must be one of: {', '.join(TELEMETRY_SINKS)}."
            )
        return token

    @field_validator("metadata_user_agent", mode="before")
    @classmethod
    def _strip_user_agent(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError(f"{ENV_PREFIX}METADATA_USER_AGENT must be a string.")
        return value.strip() or DEFAULT_USER_AGENT

    def with_runtime_paths(self) -> AppSettings:
        """Place unset data-dir children under `data_dir` and make every path absolute."""
        data_dir = self.data_dir.expanduser().resolve()
        updates: dict[str, Path] = {"data_dir": data_dir}
        for field_name, child in _DATA_DIR_CHILDREN.items():
            explicit: Path = getattr(self, field_name)
            chosen = explicit if field_name in self.model_fields_set else data_dir / child
            updates[field_name] = chosen.expanduser().resolve()
        return self.model_copy(update=updates)


def load_settings() -> AppSettings:
    return AppSettings().with_runtime_paths()
