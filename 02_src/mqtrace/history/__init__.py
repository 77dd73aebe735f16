"""History search module."""

from .detail import format_detail_payload
from .filter import HistoryQuery, fuzzy_match_topic

__all__ = ["HistoryQuery", "format_detail_payload", "fuzzy_match_topic"]
