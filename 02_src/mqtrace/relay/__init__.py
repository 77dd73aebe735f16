"""Relay module."""

from .relay import Relay, parse_address

__all__ = ["Relay", "parse_address"]
