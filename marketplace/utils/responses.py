from datetime import datetime, timezone
from typing import Any, Optional


def _meta(path: Optional[str] = None) -> dict:
    meta = {"timestamp": datetime.now(timezone.utc).isoformat()}
    if path:
        meta["path"] = path
    return meta


def success(message: str, data: Any = None) -> dict:
    body = {"status": "success", "message": message, "meta": _meta()}
    if data is not None:
        body["data"] = data
    return body


def created(message: str, data: Any = None) -> dict:
    return success(message, data)


def error_body(message: str, code: str, details: Optional[dict] = None, path: Optional[str] = None) -> dict:
    return {
        "status": "error",
        "message": message,
        "error": {"code": code, "details": details},
        "meta": _meta(path),
    }
