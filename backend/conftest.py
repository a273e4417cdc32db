# Ensure '<repo>/backend' is on sys.path so 'import mathbridge.*' and
# 'import tests.*' work even when pytest rootdir is the repo root.
from pathlib import Path
import sys

_BACKEND_ROOT = Path(__file__).resolve().parent  # <repo>/backend
if str(_BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(_BACKEND_ROOT))
