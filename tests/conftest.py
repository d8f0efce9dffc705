import os
import sys
import tempfile

# Ensure project root is on sys.path so `import hotmic` works when running tests
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Keep tests away from the real user data directory.
os.environ.setdefault("HOTMIC_DATA_DIR", os.path.join(tempfile.gettempdir(), "hotmic-tests"))
