from __future__ import annotations

import os
from typing import Dict, Iterable, List, Set

import azure.functions as func

DEFAULT_ALLOWED_HEADERS = ["Content-Type", "Authorization"]


def _raw_origins() -> str:
    return os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ALLOWED_ORIGINS") or "*"


def parse_origins(raw: str) -> List[str]:
    """Split comma-separated origins, honoring a wildcard if present."""
    origins: List[str] = []
    for origin in raw.split(","):
        cleaned = origin.strip().rstrip("/")
        if not cleaned:
            continue
        if cleaned == "*":
            return ["*"]
        origins.append(cleaned.lower())
    return origins


def _allow_credentials() -> bool:
    return (os.getenv("CORS_ALLOW_CREDENTIALS") or "").strip().lower() in {"1", "true", "yes", "y"}


def _methods(allowed_methods: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    methods_list: List[str] = []
    for method in allowed_methods:
        normalized = method.strip().upper()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        methods_list.append(normalized)
    if "OPTIONS" not in seen:
        methods_list.append("OPTIONS")
    return methods_list


def build_cors_headers(req: func.HttpRequest, allowed_methods: Iterable[str]) -> Dict[str, str]:
    """Return CORS headers for the request origin if allowed."""
    origin = req.headers.get("origin") or req.headers.get("Origin")
    allowed_origins = parse_origins(_raw_origins())
    allow_all = "*" in allowed_origins or not allowed_origins
    origin_allowed = allow_all or bool(origin and origin.rstrip("/").lower() in allowed_origins)

    headers: Dict[str, str] = {"Vary": "Origin"}
    if not origin_allowed:
        return headers

    credentials = _allow_credentials()
    # Browsers reject a wildcard origin on credentialed requests.
    allow_origin = origin if (origin and (credentials or not allow_all)) else "*"
    headers.update(
        {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": ", ".join(_methods(allowed_methods)),
            "Access-Control-Allow-Headers": ", ".join(DEFAULT_ALLOWED_HEADERS),
        }
    )
    if credentials:
        headers["Access-Control-Allow-Credentials"] = "true"
    return headers
