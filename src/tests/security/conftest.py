"""Security test fixtures."""

from pathlib import Path

import pytest


@pytest.fixture
def project_root() -> Path:
    """Get project root directory."""
    # Go up: security -> tests -> src -> project_root
    return Path(__file__).resolve().parent.parent.parent.parent


@pytest.fixture
def source_files(project_root: Path) -> list[Path]:
    """Get all non-test Python source files."""
    package_dir = project_root / "src" / "task_service"
    if not package_dir.exists():
        return []
    return list(package_dir.rglob("*.py"))
