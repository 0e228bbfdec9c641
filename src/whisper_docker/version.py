"""
Version utility for the Whisper Docker provider.

Provides a single source of truth for version information,
reading from installed package metadata or pyproject.toml.
"""

from pathlib import Path

DISTRIBUTION_NAME = "whisper-docker-provider"


def get_version() -> str:
    """
    Get the provider version.

    Priority:
    1. importlib.metadata.version() - when installed as a package
    2. pyproject.toml - when running from a source checkout

    Returns:
        Version string (e.g., "0.1.0") or "dev" if unavailable
    """
    try:
        from importlib.metadata import PackageNotFoundError, version

        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        pass

    try:
        import tomllib

        for parent in Path(__file__).resolve().parents:
            pyproject_path = parent / "pyproject.toml"
            if pyproject_path.exists():
                with open(pyproject_path, "rb") as f:
                    data = tomllib.load(f)
                return data.get("project", {}).get("version", "dev")
    except (OSError, ValueError):
        pass

    return "dev"


__version__ = get_version()
