from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from ephemera.core.settings import settings
from ephemera.main import app


@pytest.fixture
def client(tmp_path: Path, monkeypatch):
    """
    Create a TestClient instance.
    Entering the TestClient context runs the application lifespan, which
    builds the service container, the event bus and the provider.
    """
    monkeypatch.setattr(settings, "TMP_DIR", str(tmp_path / "cache"))
    monkeypatch.setattr(settings, "LOG_DIR", str(tmp_path / "log"))
    with TestClient(app) as c:
        yield c
