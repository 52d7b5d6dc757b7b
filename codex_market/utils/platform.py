"""Environment helpers."""

import os


def get_home_directory() -> str:
    """Get the user's home directory.

    Returns:
        Path to the home directory
    """
    return os.path.expanduser("~")


def get_env(name: str, default: str | None = None) -> str | None:
    """Get an environment variable, treating empty values as unset.

    Args:
        name: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default
    """
    value = os.environ.get(name)
    if not value:
        return default
    return value
