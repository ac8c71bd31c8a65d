"""
Configuration and fixtures for pytest.
"""

import sys
from pathlib import Path

import pytest

# The modules live at the project root
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def test_files_dir():
    """Get the path to test files directory"""
    return Path(__file__).parent
