from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

import azure.functions as func

from function_app import app
from services.forwarding_service import ForwardingError, forward_message
from services.graph_client import GraphClient
from services.message_resolver import (
    INSUFFICIENT_CRITERIA,
    INVALID_CRITERIA,
    TRANSLATION_FAILED,
    Invalid,
    MessageResolver,
    NotFound,
    ResolutionRequest,
)
from shared.auth import require_bearer
from shared.config import get_forwarding_settings
from utils.cors import build_cors_headers

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "y", "on"}
_CLIENT_ERROR_CODES = {INSUFFICIENT_CRITERIA, INVALID_CRITERIA, TRANSLATION_FAILED}


def _json_response(payload: dict, status: int, cors: dict) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(payload),
        status_code=status,
        mimetype="application/json",
        headers=cors,
    )


def _parse_json_body(req: func.HttpRequest) -> Dict[str, Any]:
    try:
        body = req.get_json()
    except ValueError:
        body = None
    return body if isinstance(body, dict) else {}


def _pick(body: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = body.get(key)
        if value is None:
            continue
        cleaned = str(value).strip()
        if cleaned:
            return cleaned
    return None


def _as_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in _TRUTHY


def _recipients_value(value: Any) -> Optional[str]:
    if isinstance(value, (list, tuple)):
        value = ";".join(str(item) for item in value if item)
    cleaned = str(value or "").strip()
    return cleaned or None


def build_resolution_request(body: Dict[str, Any]) -> ResolutionRequest:
    return ResolutionRequest(
        provided_id=_pick(body, "messageId", "message_id"),
        subject=_pick(body, "subject"),
        recipients=_recipients_value(body.get("recipients")),
        received_time=_pick(body, "receivedTime", "received_time"),
        allow_metadata_search=_as_flag(
            body.get("useMetadataSearch") if "useMetadataSearch" in body else body.get("use_metadata_search")
        ),
    )


def handle_forward_request(
    req: func.HttpRequest,
    client_factory: Callable[[str], GraphClient] = GraphClient,
) -> func.HttpResponse:
    cors = build_cors_headers(req, ["POST", "OPTIONS"])
    if req.method == "OPTIONS":
        return func.HttpResponse("", status_code=204, headers=cors)

    logger.info("Processing email forwarding request")
    token = require_bearer(req, cors)
    if isinstance(token, func.HttpResponse):
        return token

    body = _parse_json_body(req)
    logger.info("Request fields received: %s", sorted(body.keys()))
    resolution_request = build_resolution_request(body)
    settings = get_forwarding_settings()

    message_id: Optional[str] = None
    try:
        with client_factory(token) as client:
            resolver = MessageResolver(client, page_size=settings["search_page_size"])
            resolution = resolver.resolve(resolution_request)

            if isinstance(resolution, Invalid):
                status = 400 if resolution.code in _CLIENT_ERROR_CODES else 500
                logger.warning("Message resolution failed (%s): %s", resolution.code, resolution.reason)
                return _json_response({"success": False, "error": resolution.reason}, status, cors)
            if isinstance(resolution, NotFound):
                logger.error("No messages found matching metadata criteria")
                return _json_response({"success": False, "error": resolution.reason}, 404, cors)

            message_id = resolution.message_id
            logger.info("Resolved message id via %s", resolution.strategy)
            result = forward_message(
                client,
                message_id,
                trash_folder=settings["trash_folder"],
                fetch_fallback=settings["fetch_fallback"],
            )
    except ForwardingError as exc:
        logger.error("Error accessing message: %s - Message ID used: %s", exc, exc.message_id)
        return _json_response(
            {"success": False, "error": exc.describe(), "messageIdUsed": exc.message_id},
            exc.status_code,
            cors,
        )
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Error forwarding email: %s", exc)
        payload = {"success": False, "error": f"Error forwarding email: {exc}"}
        if message_id:
            payload["messageIdUsed"] = message_id
        return _json_response(payload, 500, cors)

    logger.info("Process completed successfully")
    return _json_response(
        {
            "success": True,
            "message": "Email forwarded successfully",
            "messageIdUsed": result.original_id,
            "attachmentsCopied": result.attachments_copied,
            "attachmentsSkipped": result.attachments_skipped,
        },
        200,
        cors,
    )


@app.function_name(name="ForwardEmail")
@app.route(route="forward-email", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
def forward_email(req: func.HttpRequest) -> func.HttpResponse:
    return handle_forward_request(req)
