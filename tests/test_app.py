#!/usr/bin/env python3
"""
Tests for the console's reload handler, with Streamlit replaced by a mock.
"""

import os
import sys
import unittest
from unittest.mock import MagicMock, patch

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import app
from fake_source import ALWAYS, InMemorySource, make_rows
from utils.inventory_sync import InventoryStore
from utils.sync_config import SyncConfig


class TestReloadInventory(unittest.TestCase):

    def setUp(self):
        self.source = InMemorySource(make_rows(45))
        self.store = InventoryStore(self.source, SyncConfig(page_size=20, max_page_size=20), sleep=lambda delay: None)
        self.st = MagicMock()
        patcher = patch.object(app, "st", self.st)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_failed_offsets_follow_latest_run(self):
        self.source.fail_times = {20: ALWAYS}
        app.reload_inventory(self.store)
        self.assertEqual(self.st.session_state.failed_offsets, [20])
        self.st.warning.assert_called_once()

        self.source.fail_times = {offset: ALWAYS for offset in range(0, 200, 20)}
        self.source.count = 200
        app.reload_inventory(self.store)

        self.assertEqual(self.st.session_state.failed_offsets, [0, 20, 40])
        self.st.error.assert_called_once()

    def test_clean_run_clears_failed_offsets(self):
        self.source.fail_times = {20: ALWAYS}
        app.reload_inventory(self.store)

        self.source.fail_times = {}
        app.reload_inventory(self.store)

        self.assertEqual(self.st.session_state.failed_offsets, [])
        self.st.success.assert_called_once()
        self.assertEqual(self.st.session_state.current_page, 1)


if __name__ == '__main__':
    unittest.main()
