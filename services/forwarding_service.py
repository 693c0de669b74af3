from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from services.attachments import UnsupportedAttachment, parse_attachment
from services.graph_client import GraphClient, GraphError

logger = logging.getLogger(__name__)

MESSAGE_SELECT_FIELDS = [
    "subject",
    "body",
    "toRecipients",
    "ccRecipients",
    "bccRecipients",
    "from",
    "hasAttachments",
    "importance",
    "isRead",
]
REDUCED_SELECT_FIELDS = ["subject", "body", "toRecipients", "ccRecipients", "hasAttachments", "importance"]

STAGE_FETCH = "fetch"
STAGE_ATTACHMENTS = "list_attachments"
STAGE_DRAFT = "create_draft"
STAGE_SEND = "send"
STAGE_MOVE = "move"


class ForwardingError(Exception):
    """A pipeline stage failed after the message id was resolved."""

    def __init__(self, stage: str, message_id: str, cause: GraphError) -> None:
        super().__init__(f"{stage} failed for message {message_id}: {cause}")
        self.stage = stage
        self.message_id = message_id
        self.cause = cause

    @property
    def status_code(self) -> int:
        return 404 if self.cause.is_not_found else 500

    def describe(self) -> str:
        if self.cause.status_code and self.cause.code:
            return self.cause.describe()
        if self.stage == STAGE_FETCH:
            return f"Message not found or error accessing: {self.cause.message}"
        return f"Error during {self.stage}: {self.cause.message}"


@dataclass
class ForwardResult:
    original_id: str
    draft_id: str
    subject: Optional[str] = None
    attachments_copied: List[str] = field(default_factory=list)
    attachments_skipped: List[str] = field(default_factory=list)


def build_duplicate_message(message: dict) -> dict:
    """Copy subject, body, to/cc recipients and importance into a new draft payload."""
    body = message.get("body") or {}
    return {
        "subject": message.get("subject") or "",
        "body": {
            "contentType": body.get("contentType") or "text",
            "content": body.get("content") or "",
        },
        "toRecipients": message.get("toRecipients") or [],
        "ccRecipients": message.get("ccRecipients") or [],
        "importance": message.get("importance") or "normal",
    }


def fetch_message(
    client: GraphClient,
    message_id: str,
    fallback: bool = False,
    log: Optional[logging.Logger] = None,
) -> dict:
    """
    Fetch the original message. With ``fallback`` enabled a non-404 failure is
    retried against the beta endpoint and then with a reduced field selection.
    """
    log = log or logger
    attempts = [(None, MESSAGE_SELECT_FIELDS)]
    if fallback:
        attempts.append((client.beta_url, MESSAGE_SELECT_FIELDS))
        attempts.append((None, REDUCED_SELECT_FIELDS))

    last_error: Optional[GraphError] = None
    for base_url, select in attempts:
        try:
            return client.get_message(message_id, select=select, base_url=base_url)
        except GraphError as exc:
            last_error = exc
            if exc.is_not_found:
                break
            log.warning("Message fetch attempt failed (%s): %s", base_url or client.base_url, exc)
    raise ForwardingError(STAGE_FETCH, message_id, last_error)


def copy_attachments(
    client: GraphClient,
    attachments: List[dict],
    draft_id: str,
    result: ForwardResult,
    log: Optional[logging.Logger] = None,
) -> None:
    log = log or logger
    for raw in attachments:
        attachment = parse_attachment(raw)
        if isinstance(attachment, UnsupportedAttachment):
            log.warning("Skipping attachment %s: %s", attachment.name, attachment.reason)
            result.attachments_skipped.append(attachment.name)
            continue
        log.info("Adding attachment: %s", attachment.name)
        try:
            client.add_attachment(draft_id, attachment.to_payload())
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Error adding attachment %s: %s - %s", attachment.name, exc, getattr(exc, "body", None))
            result.attachments_skipped.append(attachment.name)
            continue
        result.attachments_copied.append(attachment.name)


def forward_message(
    client: GraphClient,
    message_id: str,
    trash_folder: str = "deleteditems",
    fetch_fallback: bool = False,
    log: Optional[logging.Logger] = None,
) -> ForwardResult:
    log = log or logger

    log.info("Fetching original message")
    message = fetch_message(client, message_id, fallback=fetch_fallback, log=log)

    attachments: List[dict] = []
    if message.get("hasAttachments"):
        try:
            attachments = client.list_attachments(message_id)
        except GraphError as exc:
            raise ForwardingError(STAGE_ATTACHMENTS, message_id, exc) from exc
        log.info("Found %s attachments", len(attachments))
        for index, attachment in enumerate(attachments, start=1):
            log.info(
                "Attachment %s: Name=%s, Type=%s, Size=%s",
                index,
                attachment.get("name"),
                attachment.get("@odata.type"),
                attachment.get("size") or "unknown",
            )

    log.info("Creating new message draft")
    try:
        draft = client.create_message(build_duplicate_message(message))
    except GraphError as exc:
        raise ForwardingError(STAGE_DRAFT, message_id, exc) from exc
    draft_id = draft.get("id")
    if not draft_id:
        raise ForwardingError(STAGE_DRAFT, message_id, GraphError("Draft creation returned no id", body=draft))

    result = ForwardResult(original_id=message_id, draft_id=draft_id, subject=message.get("subject"))
    if attachments:
        copy_attachments(client, attachments, draft_id, result, log=log)

    log.info("Sending the new message")
    try:
        client.send_message(draft_id)
    except GraphError as exc:
        raise ForwardingError(STAGE_SEND, message_id, exc) from exc

    log.info("Moving original message to %s", trash_folder)
    try:
        client.move_message(message_id, trash_folder)
    except GraphError as exc:
        raise ForwardingError(STAGE_MOVE, message_id, exc) from exc

    log.info(
        "Forward completed: %s attachment(s) copied, %s skipped",
        len(result.attachments_copied),
        len(result.attachments_skipped),
    )
    return result
