import os
import sys

import pytest


# Allow running pytest from either the repo root or from within `pos_desktop/`.
# Tests import `pos_desktop.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


@pytest.fixture
def store(tmp_path):
    from pos_desktop.local_store import LocalStore

    s = LocalStore(str(tmp_path / "pos.sqlite"))
    s.init_db()
    return s
