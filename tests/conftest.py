"""Shared fixtures for reqstash tests."""

import json

import pytest
from click.testing import CliRunner

from reqstash import core
from reqstash.models import ProxyResponse, parse_body
from reqstash.store import DocumentStore


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def global_reqstash_dir(tmp_path, monkeypatch):
    """Override the global ~/.reqstash directory to a temp location."""
    fake_global = tmp_path / "fake_home" / ".reqstash"
    fake_global.mkdir(parents=True)
    monkeypatch.setattr(core, "GLOBAL_DIR", fake_global)
    monkeypatch.setattr(core, "GLOBAL_CONFIG", fake_global / "config.yaml")
    return fake_global


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "saved_requests.json"


@pytest.fixture
def store(store_path):
    return DocumentStore(store_path)


@pytest.fixture
def no_sleep(monkeypatch):
    """Make the save retry loop instant."""
    sleeps = []
    monkeypatch.setattr("reqstash.store.time.sleep", sleeps.append)
    return sleeps


def make_response(status_code=200, body=None, headers=None, error="", elapsed_ms=42.0):
    """Factory for ProxyResponse objects as the executor returns them."""
    if error:
        return ProxyResponse(error=error)
    raw = json.dumps(body) if isinstance(body, dict | list) else body
    return ProxyResponse(
        status=f"{status_code} OK",
        status_code=status_code,
        headers=headers or {},
        body=parse_body(raw),
        elapsed_ms=elapsed_ms,
    )


def write_document(path, data):
    """Write a raw document dict as the store file."""
    path.write_text(json.dumps(data, indent=2))


def read_document(path):
    return json.loads(path.read_text())
