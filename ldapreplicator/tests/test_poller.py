"""
Tests for ChangelogPoller.
"""

import unittest
from unittest.mock import Mock

from ldapreplicator.tests.utils import (
    URL,
    FakeDirectoryClient,
    FakeResult,
    changelog_entry,
    configure_settings,
)

configure_settings()

from ldapreplicator.exceptions import (  # noqa: E402
    MalformedEntryError,
    MatchTypeError,
    PayloadParseError,
    SearchError,
)
from ldapreplicator.matcher import QueryMatcher  # noqa: E402
from ldapreplicator.poller import CHANGELOG_DN, ChangelogPoller, changelog_filter  # noqa: E402
from ldapreplicator.queries import compile_queries  # noqa: E402

USER = "uuid=930896af, ou=users, o=smartdc"
SERVER = "uuid=44454c4c, ou=servers, o=smartdc"
PERSON = {"objectclass": ["sdcperson"], "login": ["bob"]}


class PollerTestMixin:
    def make_poller(self, results=None, defer=False):
        self.errors = []
        self.client = FakeDirectoryClient({"url": URL}, results=results, defer=defer)
        queries = compile_queries(URL, ["/ou=users, o=smartdc??sub?(objectclass=sdcperson)"])
        matcher = QueryMatcher(queries, on_error=self.errors.append)
        self.poller = ChangelogPoller(
            lambda: self.client, matcher, on_error=self.errors.append
        )
        return self.poller


class TestChangelogPoller(PollerTestMixin, unittest.TestCase):
    """Test polling the change-log."""

    def test_search_request(self):
        """Test that a poll issues one subtree search of the change-log window."""
        poller = self.make_poller()
        done = Mock()
        poller.poll(1, 10, Mock(), done)
        self.assertEqual(len(self.client.searches), 1)
        base, scope, filterstr = self.client.searches[0]
        self.assertEqual(base, CHANGELOG_DN)
        self.assertEqual(scope, "sub")
        self.assertEqual(filterstr, changelog_filter(1, 10))
        self.assertIn("changenumber>=1", filterstr)
        self.assertIn("changenumber<=10", filterstr)
        done.assert_called_once_with(0)

    def test_only_matching_entries_are_forwarded(self):
        """Test that irrelevant entries count towards progress but aren't forwarded."""
        poller = self.make_poller(
            results={
                CHANGELOG_DN: FakeResult(
                    [
                        changelog_entry(5, "add", SERVER, {"objectclass": "server"}),
                        changelog_entry(7, "add", USER, PERSON),
                        changelog_entry(9, "delete", SERVER),
                    ]
                )
            }
        )
        on_match = Mock()
        on_done = Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        entry = on_match.call_args[0][0]
        self.assertEqual(entry.change_number, 7)
        self.assertEqual(len(entry.matched_queries), 1)
        on_done.assert_called_once_with(9)
        self.assertEqual(self.errors, [])
        self.assertFalse(poller.polling)

    def test_overlapping_poll_is_rejected(self):
        """Test that a poll while another is in flight completes at once."""
        poller = self.make_poller(
            results={CHANGELOG_DN: FakeResult([changelog_entry(3, "add", USER, PERSON)])},
            defer=True,
        )
        first_match, first_done = Mock(), Mock()
        second_match, second_done = Mock(), Mock()
        poller.poll(1, 10, first_match, first_done)
        self.assertTrue(poller.polling)
        poller.poll(1, 10, second_match, second_done)
        second_done.assert_called_once_with(None)
        second_match.assert_not_called()
        first_done.assert_not_called()
        self.assertEqual(len(self.client.searches), 1)

        self.client.drive_pending()
        first_match.assert_called_once()
        first_done.assert_called_once_with(3)
        self.assertFalse(poller.polling)

        # Once finished, the next poll goes through
        poller.poll(4, 10, Mock(), Mock())
        self.assertEqual(len(self.client.searches), 2)

    def test_malformed_payload_is_delivered_raw(self):
        """Test that an undecodable payload is delivered as the original string."""
        poller = self.make_poller(
            results={
                CHANGELOG_DN: FakeResult([changelog_entry(4, "modify", USER, "{not json")])
            }
        )
        on_match = Mock()
        on_done = Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        self.assertEqual(on_match.call_args[0][0].changes, "{not json")
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], PayloadParseError)
        on_done.assert_called_once_with(4)

    def test_search_failure(self):
        """Test that a search that can't be issued completes with 0."""
        poller = self.make_poller(
            results={CHANGELOG_DN: FakeResult(search_error=SearchError("nope"))}
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_not_called()
        on_done.assert_called_once_with(0)
        self.assertIsInstance(self.errors[0], SearchError)
        self.assertFalse(poller.polling)

    def test_stream_error_reports_progress_so_far(self):
        """Test that a stream error completes with the last change number seen."""
        poller = self.make_poller(
            results={
                CHANGELOG_DN: FakeResult(
                    [
                        changelog_entry(3, "add", USER, PERSON),
                        changelog_entry(4, "delete", USER),
                    ],
                    error=SearchError("connection reset"),
                )
            }
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        self.assertEqual(on_match.call_count, 2)
        on_done.assert_called_once_with(4)
        self.assertEqual(len(self.errors), 1)

    def test_no_session(self):
        """Test that polling without a session completes with 0."""
        poller = self.make_poller()
        self.client = None
        on_done = Mock()
        poller.poll(1, 10, Mock(), on_done)
        on_done.assert_called_once_with(0)
        self.assertIsInstance(self.errors[0], SearchError)
        self.assertFalse(poller.polling)

    def test_unknown_change_type_still_counts(self):
        """Test that an entry with an unknown change type advances progress."""
        poller = self.make_poller(
            results={CHANGELOG_DN: FakeResult([changelog_entry(6, "modrdn", USER)])}
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_not_called()
        on_done.assert_called_once_with(6)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], MatchTypeError)

    def test_malformed_entry_is_skipped(self):
        """Test that an entry without a change number is reported and skipped."""
        dn, attrs = changelog_entry(2, "add", USER, PERSON)
        attrs["changenumber"] = [b"two"]
        poller = self.make_poller(
            results={
                CHANGELOG_DN: FakeResult([(dn, attrs), changelog_entry(3, "delete", USER)])
            }
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        on_done.assert_called_once_with(3)
        self.assertEqual(len(self.errors), 1)

    def test_failing_consumer(self):
        """Test that an exception in on_match still completes the poll."""
        poller = self.make_poller(
            results={CHANGELOG_DN: FakeResult([changelog_entry(3, "delete", USER)])}
        )
        on_done = Mock()
        with self.assertRaises(RuntimeError):
            poller.poll(1, 10, Mock(side_effect=RuntimeError("boom")), on_done)
        on_done.assert_called_once_with(0)
        self.assertFalse(poller.polling)

    def test_bad_target_dn_still_counts(self):
        """Test that an entry with an invalid targetdn is skipped but advances progress."""
        poller = self.make_poller(
            results={
                CHANGELOG_DN: FakeResult(
                    [
                        changelog_entry(3, "delete", USER),
                        changelog_entry(4, "delete", "this is not a dn"),
                    ]
                )
            }
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        on_done.assert_called_once_with(4)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], MalformedEntryError)
        self.assertEqual(self.errors[0].change_number, 4)

    def test_payload_that_is_not_utf8_is_delivered(self):
        """Test that a payload that isn't UTF-8 is reported and delivered raw."""
        dn, attrs = changelog_entry(5, "modify", USER)
        attrs["changes"] = [b"\xff\xfe"]
        poller = self.make_poller(results={CHANGELOG_DN: FakeResult([(dn, attrs)])})
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        self.assertIsInstance(on_match.call_args[0][0].changes, str)
        on_done.assert_called_once_with(5)
        self.assertEqual(len(self.errors), 1)
        self.assertIsInstance(self.errors[0], PayloadParseError)

    def test_unknown_change_type_outside_subtree_is_silent(self):
        """Test that an unknown change type outside every query's subtree is not an error."""
        poller = self.make_poller(
            results={CHANGELOG_DN: FakeResult([changelog_entry(7, "modrdn", SERVER)])}
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_not_called()
        on_done.assert_called_once_with(7)
        self.assertEqual(self.errors, [])

    def test_mixed_case_attribute_names(self):
        """Test that an addition matches regardless of attribute name case."""
        self.errors = []
        self.client = FakeDirectoryClient(
            {"url": URL},
            results={
                CHANGELOG_DN: FakeResult(
                    [changelog_entry(8, "add", USER, {"objectClass": ["sdcPerson"]})]
                )
            },
        )
        queries = compile_queries(URL, ["/ou=users, o=smartdc??sub?(objectClass=sdcperson)"])
        poller = ChangelogPoller(
            lambda: self.client, QueryMatcher(queries), on_error=self.errors.append
        )
        on_match, on_done = Mock(), Mock()
        poller.poll(1, 10, on_match, on_done)
        on_match.assert_called_once()
        self.assertEqual(on_match.call_args[0][0].matched_queries, [queries[0].filter])
        on_done.assert_called_once_with(8)
