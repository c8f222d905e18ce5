import os
from pathlib import Path

import pytest

# Keep tests independent of an operator's registry login
os.environ.pop("REGISTRY_USERNAME", None)
os.environ.pop("REGISTRY_PASSWORD", None)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    """Fresh orchestrator state directory."""
    return tmp_path / ".release-state"
