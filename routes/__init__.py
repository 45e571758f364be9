"""REST routers of the Glowbook booking API."""

from typing import Any, Optional


def success(data: Any = None, message: Optional[str] = None) -> dict:
    body = {"status": "success", "data": data}
    if message:
        body["message"] = message
    return body
