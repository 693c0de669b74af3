import os
import unittest
from unittest import mock

from shared.config import get_forwarding_settings, get_graph_settings


class ConfigTests(unittest.TestCase):
    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            graph = get_graph_settings()
            forwarding = get_forwarding_settings()
        self.assertEqual(graph["base_url"], "https://graph.microsoft.com/v1.0")
        self.assertEqual(graph["timeout"], 20)
        self.assertEqual(forwarding["search_page_size"], 5)
        self.assertEqual(forwarding["trash_folder"], "deleteditems")
        self.assertFalse(forwarding["fetch_fallback"])

    def test_overrides_and_bad_values(self):
        env = {
            "GRAPH_API_BASE_URL": "https://graph.example/v1.0/",
            "GRAPH_TIMEOUT_SECONDS": "not-a-number",
            "MESSAGE_SEARCH_PAGE_SIZE": "0",
            "FORWARD_FETCH_FALLBACK": "Yes",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            graph = get_graph_settings()
            forwarding = get_forwarding_settings()
        self.assertEqual(graph["base_url"], "https://graph.example/v1.0")
        self.assertEqual(graph["timeout"], 20)
        self.assertEqual(forwarding["search_page_size"], 1)
        self.assertTrue(forwarding["fetch_fallback"])


if __name__ == "__main__":
    unittest.main()
