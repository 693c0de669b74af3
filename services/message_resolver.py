from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol, Union

logger = logging.getLogger(__name__)

LEGACY_ID_MARKER = "/"
SEARCH_SELECT_FIELDS = ["id", "receivedDateTime", "subject", "toRecipients"]
DEFAULT_SEARCH_PAGE_SIZE = 5
# Graph requires a sorted property to appear first in $filter.
RECEIVED_FLOOR = "1900-01-01T00:00:00Z"
RECENT_FIRST = "receivedDateTime desc"

STRATEGY_DIRECT = "direct"
STRATEGY_TRANSLATED = "translated"
STRATEGY_METADATA = "metadata_search"

INSUFFICIENT_CRITERIA = "insufficient_criteria"
INVALID_CRITERIA = "invalid_criteria"
TRANSLATION_FAILED = "translation_failed"
SEARCH_FAILED = "search_failed"


class MessageQueryService(Protocol):
    def list_messages(
        self,
        filter_query: Optional[str] = None,
        top: int = DEFAULT_SEARCH_PAGE_SIZE,
        select: Optional[Iterable[str]] = None,
        orderby: Optional[str] = None,
    ) -> List[dict]: ...

    def translate_exchange_id(
        self,
        source_id: str,
        source_id_type: str = "ewsId",
        target_id_type: str = "restId",
    ) -> str: ...


@dataclass
class ResolutionRequest:
    provided_id: Optional[str] = None
    subject: Optional[str] = None
    recipients: Optional[str] = None
    received_time: Optional[str] = None
    allow_metadata_search: bool = False


@dataclass
class CandidateMessage:
    id: str
    received_date_time: Optional[str] = None
    subject: Optional[str] = None
    to_recipients: List[str] = field(default_factory=list)

    @classmethod
    def from_graph(cls, payload: dict) -> "CandidateMessage":
        addresses = []
        for recipient in payload.get("toRecipients") or []:
            email = recipient.get("emailAddress") if isinstance(recipient, dict) else None
            if not isinstance(email, dict):
                continue
            address = email.get("address")
            if address:
                addresses.append(str(address))
        return cls(
            id=str(payload.get("id") or ""),
            received_date_time=payload.get("receivedDateTime"),
            subject=payload.get("subject"),
            to_recipients=addresses,
        )


@dataclass(frozen=True)
class Resolved:
    message_id: str
    strategy: str


@dataclass(frozen=True)
class NotFound:
    reason: str


@dataclass(frozen=True)
class Invalid:
    reason: str
    code: str = INSUFFICIENT_CRITERIA


ResolutionResult = Union[Resolved, NotFound, Invalid]


def is_native_id(message_id: Optional[str]) -> bool:
    """A native id is non-empty and carries no path separator."""
    if not message_id:
        return False
    return LEGACY_ID_MARKER not in message_id


def normalize_subject(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_recipients(value: Optional[str]) -> List[str]:
    """Split a ``;``-separated list into unique trimmed lowercase addresses, first-seen order."""
    seen = set()
    addresses: List[str] = []
    for part in str(value or "").split(";"):
        cleaned = part.strip().lower()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        addresses.append(cleaned)
    return addresses


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_odata_timestamp(value: datetime) -> str:
    value = value.astimezone(timezone.utc)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def escape_odata(value: str) -> str:
    return value.replace("'", "''")


def build_search_filter(
    subject: Optional[str],
    recipients: List[str],
    received_at: Optional[datetime],
) -> str:
    """
    Build the conjunctive server-side filter.
    Only the first recipient can be pushed to the server; with an exact
    receipt time the recipient term is dropped and checked client-side.
    Without an exact time the filter leads with an open ``receivedDateTime``
    range so Graph accepts the ``receivedDateTime desc`` sort order.
    """
    parts = []
    if received_at is None:
        parts.append(f"receivedDateTime ge {RECEIVED_FLOOR}")
    cleaned_subject = str(subject or "").strip()
    if cleaned_subject:
        parts.append(f"subject eq '{escape_odata(cleaned_subject)}'")
    if received_at is not None:
        parts.append(f"receivedDateTime eq {format_odata_timestamp(received_at)}")
    elif recipients:
        parts.append(f"toRecipients/any(r: r/emailAddress/address eq '{escape_odata(recipients[0])}')")
    return " and ".join(parts)


class MessageResolver:
    """Resolve a caller's partial identifying information to exactly one message id."""

    def __init__(
        self,
        service: MessageQueryService,
        page_size: int = DEFAULT_SEARCH_PAGE_SIZE,
        log: Optional[logging.Logger] = None,
    ) -> None:
        self.service = service
        self.page_size = page_size
        self.log = log or logger

    def resolve(self, request: ResolutionRequest) -> ResolutionResult:
        provided_id = str(request.provided_id or "").strip()
        translation_error: Optional[str] = None

        if provided_id:
            if is_native_id(provided_id):
                self.log.info("Using provided message id as-is")
                return Resolved(provided_id, STRATEGY_DIRECT)
            if LEGACY_ID_MARKER in provided_id:
                translated, translation_error = self._translate(provided_id)
                if translated:
                    return Resolved(translated, STRATEGY_TRANSLATED)

        if not request.allow_metadata_search:
            if translation_error:
                return Invalid(f"Legacy message id could not be translated: {translation_error}", TRANSLATION_FAILED)
            return Invalid(
                "Message ID is required and could not be determined via metadata search.",
                INSUFFICIENT_CRITERIA,
            )

        return self._search(request)

    def _translate(self, legacy_id: str) -> tuple[Optional[str], Optional[str]]:
        self.log.info("Attempting to convert Exchange ID format to REST format")
        try:
            translated = self.service.translate_exchange_id(legacy_id, "ewsId", "restId")
        except Exception as exc:  # pylint: disable=broad-except
            self.log.error("Failed to convert Exchange ID: %s", exc)
            return None, str(exc)
        if not translated:
            self.log.error("Failed to convert Exchange ID: empty translation result")
            return None, "empty translation result"
        self.log.info("Converted legacy message id")
        return translated, None

    def _search(self, request: ResolutionRequest) -> ResolutionResult:
        subject = str(request.subject or "").strip()
        recipients = normalize_recipients(request.recipients)
        raw_time = str(request.received_time or "").strip()

        if not (subject or recipients or raw_time):
            self.log.warning("Metadata search requested without subject, recipients or receivedTime")
            return Invalid("insufficient search criteria", INSUFFICIENT_CRITERIA)

        received_at = None
        if raw_time:
            received_at = parse_timestamp(raw_time)
            if received_at is None:
                return Invalid(f"receivedTime is not a valid ISO-8601 timestamp: {raw_time}", INVALID_CRITERIA)

        filter_query = build_search_filter(subject, recipients, received_at)
        orderby = None if received_at is not None else RECENT_FIRST
        self.log.info("Searching for message with filter: %s", filter_query)

        try:
            rows = self.service.list_messages(
                filter_query=filter_query,
                top=self.page_size,
                select=SEARCH_SELECT_FIELDS,
                orderby=orderby,
            )
        except Exception as exc:  # pylint: disable=broad-except
            self.log.error("Error searching for message: %s", exc)
            describe = getattr(exc, "describe", None)
            detail = describe() if callable(describe) else str(exc)
            return Invalid(f"search failed: {detail}", SEARCH_FAILED)

        candidates = [CandidateMessage.from_graph(row) for row in rows or [] if isinstance(row, dict)]
        self.log.info("Metadata search returned %s candidate(s)", len(candidates))
        for candidate in candidates:
            if candidate.id and self._candidate_matches(candidate, subject, recipients, received_at):
                self.log.info("Found message matching metadata criteria")
                return Resolved(candidate.id, STRATEGY_METADATA)

        return NotFound(f"No messages found with subject: {subject or '-'}, recipients: {request.recipients or '-'}")

    def _candidate_matches(
        self,
        candidate: CandidateMessage,
        subject: str,
        recipients: List[str],
        received_at: Optional[datetime],
    ) -> bool:
        if subject and normalize_subject(candidate.subject) != normalize_subject(subject):
            return False

        if recipients:
            actual = {address.strip().lower() for address in candidate.to_recipients}
            missing = [address for address in recipients if address not in actual]
            if missing:
                self.log.info("Skipping candidate missing %s expected recipient(s)", len(missing))
                return False

        if received_at is not None:
            candidate_time = parse_timestamp(candidate.received_date_time)
            if candidate_time != received_at:
                # Sub-second precision and offset formatting can differ from the filter value.
                self.log.warning(
                    "Candidate receivedDateTime %s differs from requested %s",
                    candidate.received_date_time,
                    format_odata_timestamp(received_at),
                )
        return True
