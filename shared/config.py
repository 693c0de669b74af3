import os
from typing import Optional

_TRUTHY = {"1", "true", "yes", "y", "on"}


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting with an optional default."""
    return os.getenv(name, default)


def get_int_setting(name: str, default: int) -> int:
    raw = get_setting(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_flag_setting(name: str, default: bool = False) -> bool:
    raw = get_setting(name)
    if raw is None or raw == "":
        return default
    return str(raw).strip().lower() in _TRUTHY


def get_graph_settings() -> dict:
    """
    Centralized helper for Microsoft Graph env vars.
    Base URLs are returned without a trailing slash.
    """
    return {
        "base_url": (get_setting("GRAPH_API_BASE_URL") or "https://graph.microsoft.com/v1.0").rstrip("/"),
        "beta_url": (get_setting("GRAPH_API_BETA_URL") or "https://graph.microsoft.com/beta").rstrip("/"),
        "timeout": get_int_setting("GRAPH_TIMEOUT_SECONDS", 20),
    }


def get_forwarding_settings() -> dict:
    """
    Settings for the forward-email flow.
    The search page size is clamped to at least one candidate.
    """
    return {
        "search_page_size": max(get_int_setting("MESSAGE_SEARCH_PAGE_SIZE", 5), 1),
        "trash_folder": get_setting("FORWARD_TRASH_FOLDER") or "deleteditems",
        "fetch_fallback": get_flag_setting("FORWARD_FETCH_FALLBACK", False),
    }
