from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from shared.config import get_graph_settings

logger = logging.getLogger(__name__)

ITEM_ATTACHMENT_EXPAND = "microsoft.graph.itemattachment/item"


class GraphError(Exception):
    """A failed Microsoft Graph call.

    ``status_code`` is the HTTP status (0 for transport failures), ``code`` is
    the service-defined error code from the Graph error envelope when present,
    and ``body`` keeps the raw payload for diagnostics.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        code: Optional[str] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.body = body

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    def describe(self) -> str:
        if self.status_code and self.code:
            return f"Graph API Error: {self.code} - {self.message}"
        return self.message

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GraphError":
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        code = None
        message = None
        if isinstance(body, dict) and isinstance(body.get("error"), dict):
            code = body["error"].get("code")
            message = body["error"].get("message")
        if not message:
            message = response.text or f"HTTP {response.status_code}"
        return cls(message, status_code=response.status_code, code=code, body=body)


def _join(values: Optional[Iterable[str]]) -> Optional[str]:
    if not values:
        return None
    return ",".join(values)


class GraphClient:
    """Thin delegated-token wrapper over the Graph ``/me`` mailbox endpoints."""

    def __init__(
        self,
        access_token: str,
        base_url: Optional[str] = None,
        beta_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        settings = get_graph_settings()
        self.base_url = (base_url or settings["base_url"]).rstrip("/")
        self.beta_url = (beta_url or settings["beta_url"]).rstrip("/")
        self._http = httpx.Client(
            timeout=timeout if timeout is not None else settings["timeout"],
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        base_url: Optional[str] = None,
    ) -> Any:
        url = f"{(base_url or self.base_url)}{path}"
        try:
            response = self._http.request(method, url, params=params, json=json_body)
        except httpx.HTTPError as exc:
            raise GraphError(f"Graph request failed: {exc}") from exc

        if response.status_code >= 300:
            error = GraphError.from_response(response)
            logger.warning("Graph %s %s failed: %s %s", method, path, response.status_code, error.code)
            raise error
        if response.status_code == 204 or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}

    def list_messages(
        self,
        filter_query: Optional[str] = None,
        top: int = 5,
        select: Optional[Iterable[str]] = None,
        orderby: Optional[str] = None,
    ) -> List[dict]:
        params: Dict[str, Any] = {"$top": top}
        if filter_query:
            params["$filter"] = filter_query
        selected = _join(select)
        if selected:
            params["$select"] = selected
        if orderby:
            params["$orderby"] = orderby
        data = self._request("GET", "/me/messages", params=params)
        return list(data.get("value") or [])

    def get_message(
        self,
        message_id: str,
        select: Optional[Iterable[str]] = None,
        base_url: Optional[str] = None,
    ) -> dict:
        params: Dict[str, Any] = {}
        selected = _join(select)
        if selected:
            params["$select"] = selected
        return self._request("GET", f"/me/messages/{message_id}", params=params or None, base_url=base_url)

    def list_attachments(self, message_id: str) -> List[dict]:
        # Item attachments only carry their embedded item when expanded.
        data = self._request(
            "GET",
            f"/me/messages/{message_id}/attachments",
            params={"$expand": ITEM_ATTACHMENT_EXPAND},
        )
        return list(data.get("value") or [])

    def translate_exchange_id(
        self,
        source_id: str,
        source_id_type: str = "ewsId",
        target_id_type: str = "restId",
    ) -> str:
        data = self._request(
            "POST",
            "/me/translateExchangeIds",
            json_body={
                "inputIds": [source_id],
                "sourceIdType": source_id_type,
                "targetIdType": target_id_type,
            },
        )
        values = data.get("value") or []
        target_id = values[0].get("targetId") if values and isinstance(values[0], dict) else None
        if not target_id:
            raise GraphError("No translated ID returned or targetId is missing.", body=data)
        return target_id

    def create_message(self, payload: dict) -> dict:
        return self._request("POST", "/me/messages", json_body=payload)

    def add_attachment(self, message_id: str, payload: dict) -> dict:
        return self._request("POST", f"/me/messages/{message_id}/attachments", json_body=payload)

    def send_message(self, message_id: str) -> None:
        self._request("POST", f"/me/messages/{message_id}/send", json_body={})

    def move_message(self, message_id: str, destination_id: str) -> dict:
        return self._request("POST", f"/me/messages/{message_id}/move", json_body={"destinationId": destination_id})
