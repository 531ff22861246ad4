import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


@pytest.fixture(autouse=True)
def _default_server_settings(monkeypatch):
    # Settings are read from the environment at import; pin the ones routers branch on.
    from backend.app.config import settings

    monkeypatch.setattr(settings, "enforce_stock_on_sale", False)
    monkeypatch.setattr(settings, "env", "test")
