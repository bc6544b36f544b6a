from typing import Any, Dict
import json

from fastapi import Request
from fastapi.responses import JSONResponse, Response


def xml_response(twiml: str) -> Response:
    return Response(content=twiml, media_type="application/xml")


def error_response(error: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(error) or "Internal server error"})


async def read_json_body(request: Request) -> Dict[str, Any]:
    """Request JSON as a dict; an empty or malformed body reads as ``{}``."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw.decode("utf-8"))
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def read_form(request: Request) -> Dict[str, str]:
    form = await request.form()
    return {k: str(v) for k, v in form.items()}
