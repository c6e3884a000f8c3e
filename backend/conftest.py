# Ensure '<repo>/backend' is on sys.path so 'import consultbook' works
# even when the package is not installed and pytest runs from the repo root.
from pathlib import Path
import sys

_BACKEND_ROOT = Path(__file__).resolve().parent  # <repo>/backend
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))

# Alembic revisions import the live schema and are exercised by `alembic upgrade`, not pytest
collect_ignore_glob = ["alembic/*"]
