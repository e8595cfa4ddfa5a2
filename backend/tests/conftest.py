import os
import sys
import tempfile
from pathlib import Path

# Ensure the backend package root is on sys.path for direct pytest runs
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

# Keep the session database out of backend/data while tests run
os.environ.setdefault(
    "STORE_DB_PATH", str(Path(tempfile.mkdtemp(prefix="route-planner-tests-")) / "route_planner.sqlite")
)
os.environ.setdefault("ROUTING_PROVIDER", "none")
