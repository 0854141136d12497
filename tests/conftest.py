"""
Pytest setup: make the src/ layout importable without installing the package.
"""

import sys
from pathlib import Path

# Add src directory to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))
