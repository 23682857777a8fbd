"""Pytest fixtures for archive_estimate tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from archive_estimate.config import RunConfig
from archive_estimate.discovery import ServiceEndpoint
from archive_estimate.logs import reset_logging


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int = 200, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text or ("" if payload is None else str(payload))

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    """Records GET calls and answers them from a handler(url, params) -> FakeResponse."""

    def __init__(self, handler) -> None:
        self.handler = handler
        self.calls: list[tuple[str, dict | None]] = []
        self.verify = True
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.closed = True

    def get(self, url, headers=None, params=None, timeout=None, **kwargs):
        self.calls.append((url, dict(params) if params else None))
        return self.handler(url, params or {})


@pytest.fixture
def run_config(tmp_path: Path) -> RunConfig:
    return RunConfig(
        mailboxes=("alice@contoso.com",),
        client_id="client-id",
        auth_mode="device_code",
        token_cache=tmp_path / "token_cache.bin",
        log_dir=tmp_path / "logs",
    )


@pytest.fixture
def endpoint() -> ServiceEndpoint:
    return ServiceEndpoint(host="graph.microsoft.com", tenant_id="tenant-guid")


@pytest.fixture
def mock_msal():
    with patch("archive_estimate.graph_client.msal") as msal_module:
        yield msal_module


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()
