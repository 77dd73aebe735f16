"""Payload formatting for the history detail view."""

import json


def format_detail_payload(payload: str | bytes) -> str:
    """Pretty-print a JSON payload with a two-space indent.

    Anything that is not a JSON object or array is returned unchanged.
    """
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")

    stripped = payload.strip()
    if not stripped.startswith(("{", "[")):
        return payload
    try:
        return json.dumps(json.loads(stripped), indent=2, ensure_ascii=False)
    except json.JSONDecodeError:
        return payload
