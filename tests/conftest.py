import os as _os
import sys

import pytest

# Ensure project root is importable (so `import onc` and `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from onc import db  # noqa: E402


@pytest.fixture(autouse=True)
def journal(tmp_path):
    """Isolated sqlite event journal per test."""
    db.set_db_path(str(tmp_path / "events.db"))
    db.init_db()
    yield db
    db.set_db_path(None)
