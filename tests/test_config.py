from datetime import UTC
from pathlib import Path

import pytest

from dealdesk.config import (
    DEFAULT_TIMEOUT_SECONDS,
    WORKSPACES_DIR,
    WorkspaceError,
    _resolve_sqlite_path,
    parse_workspace,
)


def test_resolve_sqlite_path_relative(tmp_path: Path) -> None:
    ws_dir = tmp_path / WORKSPACES_DIR / "demo"
    ws_dir.mkdir(parents=True)
    config_path = ws_dir / "workspace.yaml"
    config_path.write_text("workspace: demo\nstore:\n  sqlite_path: ./local.sqlite\n")

    resolved = _resolve_sqlite_path("./local.sqlite", config_path)
    assert resolved == (ws_dir / "local.sqlite").resolve()


def test_resolve_sqlite_path_repo_relative(tmp_path: Path) -> None:
    ws_dir = tmp_path / WORKSPACES_DIR / "demo"
    ws_dir.mkdir(parents=True)
    config_path = ws_dir / "workspace.yaml"
    config_path.write_text("workspace: demo\nstore:\n  sqlite_path: workspaces/demo/local.sqlite\n")

    resolved = _resolve_sqlite_path("workspaces/demo/local.sqlite", config_path)
    assert resolved == (tmp_path / "workspaces" / "demo" / "local.sqlite").resolve()


def test_parse_workspace_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text("workspace: demo\nstore:\n  sqlite_path: ./local.sqlite\n")

    ws = parse_workspace("demo", config_path)
    assert ws.timezone == "UTC"
    assert ws.tz is UTC
    assert ws.advisor.enabled is True
    assert ws.advisor.timeout_seconds == DEFAULT_TIMEOUT_SECONDS
    assert ws.events_path == tmp_path / "events.ndjson"


def test_parse_workspace_rejects_bad_timeout(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text(
        "store:\n  sqlite_path: ./local.sqlite\nadvisor:\n  timeout_seconds: 0\n"
    )
    with pytest.raises(WorkspaceError):
        parse_workspace("demo", config_path)


def test_parse_workspace_requires_store(tmp_path: Path) -> None:
    config_path = tmp_path / "workspace.yaml"
    config_path.write_text("workspace: demo\n")
    with pytest.raises(WorkspaceError):
        parse_workspace("demo", config_path)
