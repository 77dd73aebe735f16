"""Connection profile module."""

from .profile_config import Profile, list_profiles, load_config, load_profile

__all__ = ["Profile", "list_profiles", "load_config", "load_profile"]
