import unittest

from services.graph_client import GraphError
from services.message_resolver import (
    INSUFFICIENT_CRITERIA,
    INVALID_CRITERIA,
    SEARCH_FAILED,
    STRATEGY_DIRECT,
    STRATEGY_METADATA,
    STRATEGY_TRANSLATED,
    TRANSLATION_FAILED,
    Invalid,
    MessageResolver,
    NotFound,
    ResolutionRequest,
    Resolved,
    build_search_filter,
    is_native_id,
    normalize_recipients,
    parse_timestamp,
)


def _message(message_id, subject, recipients, received="2024-05-01T10:00:00Z"):
    return {
        "id": message_id,
        "subject": subject,
        "receivedDateTime": received,
        "toRecipients": [{"emailAddress": {"address": address}} for address in recipients],
    }


class FakeMailbox:
    def __init__(self, messages=None, translated="AAMkTranslated=", search_error=None, translate_error=None):
        self.messages = messages or []
        self.translated = translated
        self.search_error = search_error
        self.translate_error = translate_error
        self.search_calls = []
        self.translate_calls = []

    def list_messages(self, filter_query=None, top=5, select=None, orderby=None):
        self.search_calls.append({"filter": filter_query, "top": top, "select": list(select or []), "orderby": orderby})
        if self.search_error:
            raise self.search_error
        return list(self.messages)

    def translate_exchange_id(self, source_id, source_id_type="ewsId", target_id_type="restId"):
        self.translate_calls.append((source_id, source_id_type, target_id_type))
        if self.translate_error:
            raise self.translate_error
        return self.translated


class DirectAndLegacyIdTests(unittest.TestCase):
    def test_native_id_is_returned_without_service_calls(self):
        mailbox = FakeMailbox()
        result = MessageResolver(mailbox).resolve(ResolutionRequest(provided_id="AAMkAGI2TG93AAA="))
        self.assertEqual(result, Resolved("AAMkAGI2TG93AAA=", STRATEGY_DIRECT))
        self.assertEqual(mailbox.search_calls, [])
        self.assertEqual(mailbox.translate_calls, [])

    def test_legacy_id_is_translated_once(self):
        mailbox = FakeMailbox(translated="AAMkRest=")
        result = MessageResolver(mailbox).resolve(ResolutionRequest(provided_id="AAMk/legacy+ews/id"))
        self.assertEqual(result, Resolved("AAMkRest=", STRATEGY_TRANSLATED))
        self.assertEqual(mailbox.translate_calls, [("AAMk/legacy+ews/id", "ewsId", "restId")])
        self.assertEqual(mailbox.search_calls, [])

    def test_translation_failure_falls_through_to_metadata_search(self):
        mailbox = FakeMailbox(
            messages=[_message("found-1", "Invoice #42", ["a@x.com"])],
            translate_error=GraphError("bad id", status_code=400, code="ErrorInvalidIdMalformed"),
        )
        request = ResolutionRequest(
            provided_id="legacy/id",
            subject="Invoice #42",
            allow_metadata_search=True,
        )
        result = MessageResolver(mailbox).resolve(request)
        self.assertEqual(result, Resolved("found-1", STRATEGY_METADATA))
        self.assertEqual(len(mailbox.translate_calls), 1)
        self.assertEqual(len(mailbox.search_calls), 1)

    def test_translation_failure_without_search_is_invalid(self):
        mailbox = FakeMailbox(translate_error=GraphError("bad id", status_code=400))
        result = MessageResolver(mailbox).resolve(ResolutionRequest(provided_id="legacy/id"))
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, TRANSLATION_FAILED)

    def test_empty_translation_counts_as_failure(self):
        mailbox = FakeMailbox(translated="")
        result = MessageResolver(mailbox).resolve(ResolutionRequest(provided_id="legacy/id"))
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, TRANSLATION_FAILED)

    def test_missing_id_without_search_is_invalid(self):
        mailbox = FakeMailbox()
        result = MessageResolver(mailbox).resolve(ResolutionRequest(subject="Hello"))
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, INSUFFICIENT_CRITERIA)
        self.assertEqual(mailbox.search_calls, [])

    def test_native_id_heuristic(self):
        self.assertTrue(is_native_id("AAMkAGI2="))
        self.assertFalse(is_native_id("AAMk/AGI2"))
        self.assertFalse(is_native_id(""))
        self.assertFalse(is_native_id(None))


class MetadataSearchTests(unittest.TestCase):
    def _search_request(self, **overrides):
        fields = {
            "subject": "Invoice #42",
            "recipients": "a@x.com;b@x.com",
            "allow_metadata_search": True,
        }
        fields.update(overrides)
        return ResolutionRequest(**fields)

    def test_first_fully_matching_candidate_wins(self):
        mailbox = FakeMailbox(
            messages=[
                _message("m1", "Invoice #41", ["a@x.com", "b@x.com"]),
                _message("m2", "  invoice #42 ", ["a@x.com", "b@x.com", "c@x.com"]),
                _message("m3", "Invoice #42", ["a@x.com", "b@x.com"]),
            ]
        )
        result = MessageResolver(mailbox).resolve(self._search_request())
        self.assertEqual(result, Resolved("m2", STRATEGY_METADATA))

    def test_candidate_missing_one_recipient_is_rejected(self):
        mailbox = FakeMailbox(
            messages=[
                _message("m1", "Something else", ["a@x.com", "b@x.com"]),
                _message("m2", "Invoice #42", ["a@x.com", "c@x.com"]),
                _message("m3", "Other", ["a@x.com"]),
            ]
        )
        result = MessageResolver(mailbox).resolve(self._search_request())
        self.assertIsInstance(result, NotFound)

    def test_recipients_match_case_insensitive_and_unordered(self):
        mailbox = FakeMailbox(messages=[_message("m1", "Invoice #42", ["B@X.com", "A@X.COM"])])
        result = MessageResolver(mailbox).resolve(self._search_request())
        self.assertEqual(result, Resolved("m1", STRATEGY_METADATA))

    def test_subject_tolerates_surrounding_whitespace(self):
        mailbox = FakeMailbox(messages=[_message("m1", "Invoice #42   ", ["a@x.com", "b@x.com"])])
        result = MessageResolver(mailbox).resolve(self._search_request(subject="  Invoice #42"))
        self.assertEqual(result, Resolved("m1", STRATEGY_METADATA))

    def test_no_criteria_is_invalid_without_query(self):
        mailbox = FakeMailbox()
        request = ResolutionRequest(subject="  ", recipients=" ; ", received_time="", allow_metadata_search=True)
        result = MessageResolver(mailbox).resolve(request)
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, INSUFFICIENT_CRITERIA)
        self.assertEqual(mailbox.search_calls, [])

    def test_search_failure_is_not_reported_as_not_found(self):
        mailbox = FakeMailbox(search_error=GraphError("boom", status_code=503, code="ServiceUnavailable"))
        result = MessageResolver(mailbox).resolve(self._search_request())
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, SEARCH_FAILED)
        self.assertTrue(result.reason.startswith("search failed:"))
        self.assertIn("ServiceUnavailable", result.reason)

    def test_empty_result_is_not_found(self):
        mailbox = FakeMailbox(messages=[])
        result = MessageResolver(mailbox).resolve(self._search_request())
        self.assertIsInstance(result, NotFound)

    def test_query_shape_without_received_time(self):
        mailbox = FakeMailbox()
        MessageResolver(mailbox, page_size=5).resolve(self._search_request(recipients=" A@x.com ; b@x.com"))
        call = mailbox.search_calls[0]
        self.assertEqual(
            call["filter"],
            "receivedDateTime ge 1900-01-01T00:00:00Z and subject eq 'Invoice #42' "
            "and toRecipients/any(r: r/emailAddress/address eq 'a@x.com')",
        )
        self.assertEqual(call["top"], 5)
        self.assertEqual(call["orderby"], "receivedDateTime desc")
        self.assertEqual(call["select"], ["id", "receivedDateTime", "subject", "toRecipients"])

    def test_query_shape_with_received_time(self):
        mailbox = FakeMailbox()
        MessageResolver(mailbox).resolve(self._search_request(received_time="2024-05-01T12:00:00+02:00"))
        call = mailbox.search_calls[0]
        self.assertEqual(call["filter"], "subject eq 'Invoice #42' and receivedDateTime eq 2024-05-01T10:00:00Z")
        self.assertIsNone(call["orderby"])

    def test_received_time_mismatch_only_warns(self):
        mailbox = FakeMailbox(
            messages=[_message("m1", "Invoice #42", ["a@x.com", "b@x.com"], received="2024-05-01T10:00:00.4410000Z")]
        )
        with self.assertLogs("services.message_resolver", level="WARNING") as captured:
            result = MessageResolver(mailbox).resolve(self._search_request(received_time="2024-05-01T10:00:00Z"))
        self.assertEqual(result, Resolved("m1", STRATEGY_METADATA))
        self.assertTrue(any("differs" in line for line in captured.output))

    def test_recipients_still_validated_when_received_time_given(self):
        mailbox = FakeMailbox(messages=[_message("m1", "Invoice #42", ["a@x.com"])])
        result = MessageResolver(mailbox).resolve(self._search_request(received_time="2024-05-01T10:00:00Z"))
        self.assertIsInstance(result, NotFound)

    def test_unparseable_received_time_is_invalid(self):
        mailbox = FakeMailbox()
        result = MessageResolver(mailbox).resolve(self._search_request(received_time="yesterday"))
        self.assertIsInstance(result, Invalid)
        self.assertEqual(result.code, INVALID_CRITERIA)
        self.assertEqual(mailbox.search_calls, [])

    def test_recipient_only_search(self):
        mailbox = FakeMailbox(messages=[_message("m1", "Anything", ["a@x.com"])])
        request = ResolutionRequest(recipients="a@x.com", allow_metadata_search=True)
        self.assertEqual(MessageResolver(mailbox).resolve(request), Resolved("m1", STRATEGY_METADATA))

    def test_malformed_recipient_entries_are_ignored(self):
        row = _message("m1", "Invoice #42", [])
        row["toRecipients"] = [
            None,
            "a@x.com",
            {"emailAddress": "b@x.com"},
            {"emailAddress": {"address": "A@x.com"}},
            {"emailAddress": {"address": "b@x.com"}},
        ]
        mailbox = FakeMailbox(messages=[row])
        self.assertEqual(MessageResolver(mailbox).resolve(self._search_request()), Resolved("m1", STRATEGY_METADATA))


class FilterHelperTests(unittest.TestCase):
    def test_quotes_are_doubled(self):
        self.assertEqual(
            build_search_filter("O'Brien's report", ["o'neil@x.com"], None),
            "receivedDateTime ge 1900-01-01T00:00:00Z and subject eq 'O''Brien''s report' "
            "and toRecipients/any(r: r/emailAddress/address eq 'o''neil@x.com')",
        )

    def test_sorted_property_leads_the_filter(self):
        query = build_search_filter("Invoice", ["a@x.com"], None)
        self.assertTrue(query.startswith("receivedDateTime ge "))

        exact = build_search_filter("Invoice", ["a@x.com"], parse_timestamp("2024-05-01T10:00:00Z"))
        self.assertEqual(exact, "subject eq 'Invoice' and receivedDateTime eq 2024-05-01T10:00:00Z")

    def test_normalize_recipients_dedupes_in_order(self):
        self.assertEqual(normalize_recipients(" B@x.com;a@x.com ;; b@X.com"), ["b@x.com", "a@x.com"])
        self.assertEqual(normalize_recipients(None), [])

    def test_naive_timestamps_are_treated_as_utc(self):
        self.assertEqual(parse_timestamp("2024-05-01T10:00:00"), parse_timestamp("2024-05-01T10:00:00Z"))
        self.assertIsNone(parse_timestamp("not a date"))


if __name__ == "__main__":
    unittest.main()
