"""Decoding of backend responses into plain Python data."""

from __future__ import annotations

from typing import Any

import httpx


def extract_response_data(response: httpx.Response) -> Any:
    """Extract the body from an HTTP response.

    Parses JSON first and falls back to the raw text when the body is not
    JSON (some delete endpoints answer ``OK``). Returns ``None`` for an
    empty body.
    """
    if not response.content:
        return None

    try:
        return response.json()
    except ValueError:
        return response.text
