"""Test package for Healpack."""

import sys
from pathlib import Path

# Ensure src directory is in Python path for all test modules
_project_root = Path(__file__).resolve().parent.parent
_src_path = _project_root / "src"

_path_str = str(_src_path)
if _path_str not in sys.path:
    sys.path.insert(0, _path_str)
