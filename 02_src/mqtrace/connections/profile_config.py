"""Connection profiles read from config.toml in the data home."""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

from ..config import DEFAULT_PROFILE, PathLike, config_file_path
from ..logging_config import get_logger

logger = get_logger(__name__)

USERNAME_ENV = "MQTRACE_USERNAME"
PASSWORD_ENV = "MQTRACE_PASSWORD"


@dataclass
class Profile:
    """Broker connection settings."""

    name: str
    host: str = "localhost"
    port: int = 1883
    schema: str = "mqtt"
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    from_env: bool = False

    def broker_url(self) -> str:
        return f"{self.schema}://{self.host}:{self.port}"

    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        profile = cls(
            name=data["name"],
            host=data.get("host", "localhost"),
            port=int(data.get("port", 1883)),
            schema=data.get("schema", "mqtt"),
            username=data.get("username"),
            password=data.get("password"),
            client_id=data.get("client_id"),
            from_env=bool(data.get("from_env", False)),
        )
        if profile.from_env:
            profile.username = os.getenv(USERNAME_ENV, profile.username)
            profile.password = os.getenv(PASSWORD_ENV, profile.password)
        return profile


def load_config(file: PathLike | None = None) -> dict:
    """Read the profile file. A missing file yields an empty config."""
    path = Path(file) if file else config_file_path()
    if not path.exists():
        logger.debug(f"No profile file at {path}")
        return {}
    with open(path, "rb") as f:
        return tomllib.load(f)


def list_profiles(file: PathLike | None = None) -> list[Profile]:
    config = load_config(file)
    return [Profile.from_dict(p) for p in config.get("profiles", [])]


def load_profile(name: str | None = None, file: PathLike | None = None) -> Profile:
    """
    Select a profile by name.

    Without a name the file's default_profile is used, then "default",
    then the first profile listed.

    Raises:
        KeyError: No matching profile
    """
    config = load_config(file)
    profiles = {p.name: p for p in (Profile.from_dict(d) for d in config.get("profiles", []))}

    if name:
        if name not in profiles:
            raise KeyError(f"Unknown profile: {name}")
        return profiles[name]

    wanted = config.get("default_profile") or DEFAULT_PROFILE
    if wanted in profiles:
        return profiles[wanted]
    if profiles:
        return next(iter(profiles.values()))
    raise KeyError("No connection profiles configured")
