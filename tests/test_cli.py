"""Tests for the command-line entry points."""

from __future__ import annotations

from pathlib import Path

import pytest
from click.testing import CliRunner

from dockyard.cli import main


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch) -> Path:
    for name in ("DOCKYARD_JWT_SECRET", "DOCKYARD_CALLBACK_SECRET", "DOCKYARD_DATA_PATH"):
        monkeypatch.delenv(name, raising=False)
    path = tmp_path / "dockyard"
    result = CliRunner().invoke(main, ["init", str(path)])
    assert result.exit_code == 0, result.output
    return path


@pytest.fixture
def served(monkeypatch) -> list[dict]:
    calls: list[dict] = []

    def fake_run(app, **kwargs):
        calls.append(kwargs)

    monkeypatch.setattr("uvicorn.run", fake_run)
    return calls


def test_serve_refuses_without_jwt_secret(data_dir: Path, served: list[dict]):
    result = CliRunner().invoke(main, ["serve", "--data", str(data_dir)])
    assert result.exit_code == 1
    assert "DOCKYARD_JWT_SECRET" in result.output
    assert served == []


def test_serve_starts_with_jwt_secret(data_dir: Path, served: list[dict], monkeypatch):
    monkeypatch.setenv("DOCKYARD_JWT_SECRET", "s3cret")
    result = CliRunner().invoke(main, ["serve", "--data", str(data_dir), "--port", "9100"])
    assert result.exit_code == 0, result.output
    assert served[0]["port"] == 9100


def test_token_requires_jwt_secret(data_dir: Path):
    result = CliRunner().invoke(main, ["token", "alice@example.com", "--data", str(data_dir)])
    assert result.exit_code == 1
    assert "DOCKYARD_JWT_SECRET" in result.output
