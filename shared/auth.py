from __future__ import annotations

import json
import logging

import azure.functions as func

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class BearerAuthError(Exception):
    pass


def extract_bearer_token(req: func.HttpRequest) -> str:
    headers = {k.lower(): v for k, v in req.headers.items()} if req.headers else {}
    auth_header = str(headers.get("authorization") or "")
    if not auth_header.startswith(BEARER_PREFIX):
        raise BearerAuthError("Unauthorized: No token provided")
    token = auth_header[len(BEARER_PREFIX):].strip()
    if not token:
        raise BearerAuthError("Unauthorized: No token provided")
    return token


def require_bearer(req: func.HttpRequest, cors: dict) -> str | func.HttpResponse:
    try:
        return extract_bearer_token(req)
    except BearerAuthError as exc:
        logger.error("No authorization token provided")
        return func.HttpResponse(
            json.dumps({"success": False, "error": str(exc)}),
            status_code=401,
            mimetype="application/json",
            headers=cors,
        )
