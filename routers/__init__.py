from typing import Any, Optional

from pydantic import ValidationError


def ok(data: Any = None, message: Optional[str] = None, pagination: Optional[dict] = None, **extra) -> dict:
    body = {"success": True, "data": data}
    if pagination is not None:
        body["pagination"] = pagination
    if message:
        body["message"] = message
    body.update(extra)
    return body


def first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    if (err.get("ctx") or {}).get("error"):
        return str(err["ctx"]["error"])
    return err.get("msg", "Validation failed")
