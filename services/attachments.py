from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

FILE_ATTACHMENT = "#microsoft.graph.fileAttachment"
ITEM_ATTACHMENT = "#microsoft.graph.itemAttachment"
REFERENCE_ATTACHMENT = "#microsoft.graph.referenceAttachment"


@dataclass(frozen=True)
class FileAttachment:
    name: str
    content_type: Optional[str]
    content_bytes: str
    is_inline: bool = False
    content_id: Optional[str] = None

    def to_payload(self) -> dict:
        payload = {
            "@odata.type": FILE_ATTACHMENT,
            "name": self.name,
            "contentType": self.content_type,
            "contentBytes": self.content_bytes,
        }
        if self.is_inline:
            payload["isInline"] = True
        if self.content_id:
            payload["contentId"] = self.content_id
        return payload


@dataclass(frozen=True)
class ItemAttachment:
    name: str
    content_type: Optional[str]
    item: dict

    def to_payload(self) -> dict:
        return {
            "@odata.type": ITEM_ATTACHMENT,
            "name": self.name,
            "contentType": self.content_type,
            "item": self.item,
        }


@dataclass(frozen=True)
class ReferenceAttachment:
    name: str
    content_type: Optional[str]
    source_url: str
    provider_type: str
    permission: Optional[str] = None
    is_folder: Optional[bool] = None

    def to_payload(self) -> dict:
        payload: dict = {
            "@odata.type": REFERENCE_ATTACHMENT,
            "name": self.name,
            "contentType": self.content_type,
            "sourceUrl": self.source_url,
            "providerType": self.provider_type,
        }
        if self.permission:
            payload["permission"] = self.permission
        if self.is_folder is not None:
            payload["isFolder"] = self.is_folder
        return payload


@dataclass(frozen=True)
class UnsupportedAttachment:
    """An attachment that cannot be re-created; ``reason`` says why."""

    name: str
    odata_type: Optional[str]
    reason: str


Attachment = Union[FileAttachment, ItemAttachment, ReferenceAttachment, UnsupportedAttachment]


def parse_attachment(raw: dict[str, Any]) -> Attachment:
    odata_type = raw.get("@odata.type")
    name = str(raw.get("name") or "attachment")
    content_type = raw.get("contentType")

    if odata_type == FILE_ATTACHMENT:
        content_bytes = raw.get("contentBytes")
        if not content_bytes:
            return UnsupportedAttachment(name, odata_type, "missing contentBytes")
        return FileAttachment(
            name=name,
            content_type=content_type,
            content_bytes=content_bytes,
            is_inline=bool(raw.get("isInline")),
            content_id=raw.get("contentId"),
        )

    if odata_type == ITEM_ATTACHMENT:
        item = raw.get("item")
        if not isinstance(item, dict) or not item:
            return UnsupportedAttachment(name, odata_type, "missing item payload")
        return ItemAttachment(name=name, content_type=content_type, item=item)

    if odata_type == REFERENCE_ATTACHMENT:
        source_url = raw.get("sourceUrl")
        provider_type = raw.get("providerType")
        if not source_url or not provider_type:
            return UnsupportedAttachment(name, odata_type, "missing sourceUrl or providerType")
        is_folder = raw.get("isFolder")
        return ReferenceAttachment(
            name=name,
            content_type=content_type,
            source_url=source_url,
            provider_type=provider_type,
            permission=raw.get("permission"),
            is_folder=bool(is_folder) if is_folder is not None else None,
        )

    return UnsupportedAttachment(name, odata_type, f"unsupported attachment type: {odata_type}")
