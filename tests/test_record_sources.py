#!/usr/bin/env python3
"""
Unit tests for the HTTP record sources, with a mocked requests session.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock

import requests

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from constants.schemas import Facet, PageRequest
from utils.record_sources import RecordsApiSource, SupabaseSource, create_record_source
from utils.sync_config import SyncConfig
from utils.sync_errors import FacetsUnavailable, SourceError


def response(status_code=200, payload=None, headers=None, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload
    mock.headers = headers or {}
    mock.text = text
    return mock


class TestSupabaseSource(unittest.TestCase):

    def setUp(self):
        self.config = SyncConfig(supabase_url="https://example.supabase.co/", supabase_key="secret", facet_page_size=2)
        self.session = MagicMock(spec=requests.Session)
        self.source = SupabaseSource(self.config, session=self.session)

    def test_requires_credentials(self):
        with self.assertRaises(ValueError):
            SupabaseSource(SyncConfig())

    def test_fetch_rows_builds_range_query(self):
        self.session.get.return_value = response(200, [{"id": 1}])
        request = PageRequest(offset=40, limit=20, filters={"state": "Assam"})

        rows, total = self.source.fetch_rows(request, 15)

        self.assertEqual(rows, [{"id": 1}])
        self.assertIsNone(total)
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://example.supabase.co/rest/v1/inventory")
        self.assertEqual(kwargs["params"]["offset"], 40)
        self.assertEqual(kwargs["params"]["limit"], 20)
        self.assertEqual(kwargs["params"]["order"], "state.asc,district.asc,department_type.asc")
        self.assertEqual(kwargs["params"]["state"], "eq.Assam")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["timeout"], 15)

    def test_fetch_rows_error_status(self):
        self.session.get.return_value = response(503, text="unavailable")

        with self.assertRaises(SourceError) as ctx:
            self.source.fetch_rows(PageRequest(offset=0, limit=20), 15)
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertTrue(ctx.exception.retryable)

    def test_count_reads_content_range(self):
        self.session.head.return_value = response(200, headers={"Content-Range": "*/3573"})

        self.assertEqual(self.source.count_rows({"district": "Gaya"}, 10), 3573)
        _, kwargs = self.session.head.call_args
        self.assertEqual(kwargs["headers"]["Prefer"], "count=exact")
        self.assertEqual(kwargs["params"]["district"], "eq.Gaya")

    def test_count_rejects_unknown_range(self):
        self.session.head.return_value = response(200, headers={"Content-Range": "0-9/*"})
        with self.assertRaises(SourceError):
            self.source.count_rows({}, 10)

    def test_facet_values_paginate(self):
        self.session.get.side_effect = [
            response(200, [{"state": "Assam"}, {"state": "Bihar"}]),
            response(200, [{"state": "Bihar"}]),
        ]

        values = self.source.facet_values(Facet.STATE, {}, 10)

        self.assertEqual(sorted(values), ["Assam", "Bihar"])
        self.assertEqual(self.session.get.call_count, 2)

    def test_facet_values_error_is_unavailable(self):
        self.session.get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(FacetsUnavailable):
            self.source.facet_values(Facet.DISTRICT, {"state": "Assam"}, 10)


class TestRecordsApiSource(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock(spec=requests.Session)
        self.source = RecordsApiSource("http://localhost:8001/", token="t0ken", session=self.session)

    def test_fetch_rows_first_page_carries_total(self):
        self.session.get.return_value = response(200, {
            "success": True,
            "items": [{"id": "a"}],
            "count": 1,
            "hasMore": False,
            "totalCount": 1,
        })

        rows, total = self.source.fetch_rows(PageRequest(offset=0, limit=20, filters={"state": "Assam"}), 15)

        self.assertEqual(rows, [{"id": "a"}])
        self.assertEqual(total, 1)
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "http://localhost:8001/records")
        self.assertEqual(kwargs["params"], {"offset": 0, "limit": 20, "state": "Assam"})
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer t0ken")

    def test_success_false_is_error(self):
        self.session.get.return_value = response(200, {"success": False, "error": "db down"})

        with self.assertRaises(SourceError) as ctx:
            self.source.fetch_rows(PageRequest(offset=20, limit=20), 15)
        self.assertIn("db down", str(ctx.exception))

    def test_count(self):
        self.session.get.return_value = response(200, {"success": True, "count": 300000, "isEstimate": True})
        self.assertEqual(self.source.count_rows({}, 10), 300000)

    def test_facet_values(self):
        self.session.get.return_value = response(200, {"success": True, "values": ["Fire", "Health"]})

        values = self.source.facet_values(Facet.DEPARTMENT_TYPE, {"state": "Assam", "district": "all"}, 10)

        self.assertEqual(values, ["Fire", "Health"])
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "http://localhost:8001/facets/department-types")
        self.assertEqual(kwargs["params"], {"state": "Assam"})

    def test_facet_error_is_unavailable(self):
        self.session.get.return_value = response(500, text="boom")
        with self.assertRaises(FacetsUnavailable):
            self.source.facet_values(Facet.STATE, {}, 10)


class TestCreateRecordSource(unittest.TestCase):

    def test_prefers_records_api(self):
        config = SyncConfig(api_base_url="http://api", supabase_url="https://x", supabase_key="k")
        self.assertIsInstance(create_record_source(config, session=MagicMock()), RecordsApiSource)

    def test_falls_back_to_supabase(self):
        config = SyncConfig(supabase_url="https://x", supabase_key="k")
        self.assertIsInstance(create_record_source(config, session=MagicMock()), SupabaseSource)


if __name__ == '__main__':
    unittest.main()
