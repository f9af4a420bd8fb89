from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, tzinfo
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

WORKSPACES_DIR = Path("workspaces")
CURRENT_WORKSPACE_FILE = WORKSPACES_DIR / ".current"
WORKSPACE_FILENAME = "workspace.yaml"
DEFAULT_TIMEZONE = "UTC"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class StoreConfig:
    sqlite_path: Path


@dataclass(frozen=True)
class AdvisorConfig:
    provider: str = "gemini"
    model: str = DEFAULT_MODEL
    api_key_env: str = "GEMINI_API_KEY"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    enabled: bool = True


@dataclass(frozen=True)
class WorkspaceConfig:
    name: str
    store: StoreConfig
    timezone: str
    advisor: AdvisorConfig
    path: Path

    @property
    def tz(self) -> tzinfo:
        if self.timezone == DEFAULT_TIMEZONE:
            return UTC
        return ZoneInfo(self.timezone)

    @property
    def events_path(self) -> Path:
        return self.path / "events.ndjson"


class WorkspaceError(RuntimeError):
    pass


def ensure_workspaces_dir() -> None:
    WORKSPACES_DIR.mkdir(parents=True, exist_ok=True)


def set_current_workspace(name: str) -> None:
    ensure_workspaces_dir()
    CURRENT_WORKSPACE_FILE.write_text(f"{name}\n", encoding="utf-8")


def get_current_workspace_name() -> str:
    if not CURRENT_WORKSPACE_FILE.exists():
        raise WorkspaceError("No active workspace. Run `dealdesk workspace use <name>`.")
    return CURRENT_WORKSPACE_FILE.read_text(encoding="utf-8").strip()


def workspace_path(name: str) -> Path:
    return WORKSPACES_DIR / name


def workspace_config_path(name: str) -> Path:
    return workspace_path(name) / WORKSPACE_FILENAME


def load_workspace(name: str | None = None) -> WorkspaceConfig:
    if name is None:
        name = get_current_workspace_name()
    config_path = workspace_config_path(name)
    if not config_path.exists():
        raise WorkspaceError(f"Workspace config not found: {config_path}")
    return parse_workspace(name, config_path)


def parse_workspace(name: str, config_path: Path) -> WorkspaceConfig:
    data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise WorkspaceError("Workspace config must be a mapping.")
    store = _parse_store(data.get("store"), config_path)
    timezone = _parse_timezone(data.get("timezone"))
    advisor = _parse_advisor(data.get("advisor"))
    return WorkspaceConfig(
        name=name,
        store=store,
        timezone=timezone,
        advisor=advisor,
        path=config_path.parent,
    )


def write_workspace_config(name: str, timezone: str = DEFAULT_TIMEZONE) -> Path:
    _parse_timezone(timezone)
    ensure_workspaces_dir()
    ws_dir = workspace_path(name)
    ws_dir.mkdir(parents=True, exist_ok=True)
    config = {
        "workspace": name,
        "timezone": timezone,
        "store": {"sqlite_path": "./local.sqlite"},
        "advisor": {
            "provider": "gemini",
            "model": DEFAULT_MODEL,
            "api_key_env": "GEMINI_API_KEY",
            "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
            "enabled": True,
        },
    }
    config_path = workspace_config_path(name)
    config_path.write_text(yaml.safe_dump(config, sort_keys=False), encoding="utf-8")
    return config_path


def _parse_store(store_data: Any, config_path: Path) -> StoreConfig:
    if not isinstance(store_data, dict):
        raise WorkspaceError("Invalid workspace store configuration.")
    sqlite_path_raw = store_data.get("sqlite_path")
    if not sqlite_path_raw:
        raise WorkspaceError("Workspace store.sqlite_path is required.")
    sqlite_path = _resolve_sqlite_path(sqlite_path_raw, config_path)
    if sqlite_path is None:
        raise WorkspaceError("Workspace store.sqlite_path must be a string.")
    return StoreConfig(sqlite_path=sqlite_path)


def _resolve_sqlite_path(sqlite_path_raw: Any, config_path: Path) -> Path | None:
    if not isinstance(sqlite_path_raw, str):
        return None
    raw_path = Path(sqlite_path_raw)
    if raw_path.is_absolute():
        return raw_path
    workspace_dir = config_path.parent
    if raw_path.parts and raw_path.parts[0] == WORKSPACES_DIR.name:
        # Paths written from the repo root ("workspaces/<name>/...").
        return (workspace_dir.parent.parent / raw_path).resolve()
    return (workspace_dir / raw_path).resolve()


def _parse_timezone(value: Any) -> str:
    if value is None:
        return DEFAULT_TIMEZONE
    if not isinstance(value, str):
        raise WorkspaceError("Workspace timezone must be a string.")
    if value == DEFAULT_TIMEZONE:
        return value
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise WorkspaceError(f"Unknown timezone: {value}") from exc
    return value


def _parse_advisor(advisor_data: Any) -> AdvisorConfig:
    if advisor_data is None:
        return AdvisorConfig()
    if not isinstance(advisor_data, dict):
        raise WorkspaceError("Invalid workspace advisor configuration.")
    timeout = advisor_data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise WorkspaceError("Workspace advisor.timeout_seconds must be a positive number.")
    return AdvisorConfig(
        provider=str(advisor_data.get("provider") or "gemini"),
        model=str(advisor_data.get("model") or DEFAULT_MODEL),
        api_key_env=str(advisor_data.get("api_key_env") or "GEMINI_API_KEY"),
        timeout_seconds=float(timeout),
        enabled=bool(advisor_data.get("enabled", True)),
    )
