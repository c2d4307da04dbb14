from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


@pytest.fixture(scope="session")
def app():
    # Keep the reaper quiet and avoid picking up a developer's .env values.
    os.environ["SESSION_REAPER_INTERVAL_SECONDS"] = "3600"
    os.environ.pop("WEBHOOK_URL", None)
    os.environ.pop("SYSTEM_MESSAGE", None)

    import importlib

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app):
    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
