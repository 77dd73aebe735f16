"""Project-level configuration and path helpers."""

import os
from pathlib import Path
from typing import Union

HOME_ENV = "MQTRACE_HOME"
DEFAULT_PROFILE = "default"
DEFAULT_HOME = Path.home() / ".config" / "mqtrace"
MEMORY = ":memory:"


PathLike = Union[str, Path]


def resolve_home(env_value: PathLike | None = None) -> PathLike:
    """Resolve the data home, honouring MQTRACE_HOME when no value is given."""
    if not env_value:
        env_value = os.getenv(HOME_ENV)
    if not env_value:
        return DEFAULT_HOME

    if str(env_value) == MEMORY:
        return MEMORY

    return Path(env_value).expanduser().resolve()


def profile_name(profile: str | None) -> str:
    """Return the profile identity, falling back to "default"."""
    return profile or DEFAULT_PROFILE


def data_dir(profile: str | None, home: PathLike | None = None) -> Path:
    """Base data directory for a profile: <home>/data/<profile>."""
    root = resolve_home(home)
    if root == MEMORY:
        raise ValueError("In-memory home has no data directory")
    return Path(root) / "data" / profile_name(profile)


def history_db_path(profile: str | None, home: PathLike | None = None) -> PathLike:
    """Database holding the active and archived history of a profile."""
    if resolve_home(home) == MEMORY:
        return MEMORY
    return data_dir(profile, home) / "history" / "history.db"


def traces_db_path(profile: str | None, home: PathLike | None = None) -> PathLike:
    """Database holding the trace partitions of a profile."""
    if resolve_home(home) == MEMORY:
        return MEMORY
    return data_dir(profile, home) / "traces" / "traces.db"


def registry_db_path(home: PathLike | None = None) -> PathLike:
    """Database holding the registered trace configurations."""
    root = resolve_home(home)
    if root == MEMORY:
        return MEMORY
    return Path(root) / "traces.db"


def config_file_path(home: PathLike | None = None) -> Path:
    """Location of the connection profile file."""
    root = resolve_home(home)
    if root == MEMORY:
        root = DEFAULT_HOME
    return Path(root) / "config.toml"


def log_path(home: PathLike | None = None) -> Path:
    """Location of the application log file."""
    root = resolve_home(home)
    if root == MEMORY:
        root = DEFAULT_HOME
    return Path(root) / "logs" / "app.log"


def resolve_db_path(path: PathLike) -> PathLike:
    """Create the parent directory of a database file when needed."""
    if str(path) == MEMORY:
        return MEMORY
    candidate = Path(path)
    candidate.parent.mkdir(parents=True, exist_ok=True)
    return candidate
