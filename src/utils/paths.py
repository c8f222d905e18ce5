from pathlib import Path

PROJECT_MARKERS = ("orchestrator.yaml", "pyproject.toml")


def get_project_root(start: Path | None = None) -> Path:
    """Get the project root directory.

    Walks up from ``start`` (the working directory by default) to find the
    project root, identified by an orchestrator.yaml or a pyproject.toml.

    Returns:
        Path to the project root directory
    """
    current = (start or Path.cwd()).resolve()

    for marker in PROJECT_MARKERS:
        for parent in [current, *current.parents]:
            if (parent / marker).exists():
                return parent

    # Fallback to the starting directory
    return current
