#!/usr/bin/env python3
"""
Unit tests for the sync run state machine.

These drive ``transition`` directly with scripted events, so no source,
fetcher or clock is involved.
"""

import os
import sys
import unittest

# Add the parent directory to the path to access utils
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from constants.schemas import RunStatus
from utils.sync_config import SyncConfig
from utils.sync_state import (
    Backoff,
    Cancelled,
    EmitProgress,
    FetchPage,
    PageFailed,
    PageLoaded,
    Phase,
    RecordFailure,
    Sized,
    in_progress_percentage,
    initial_state,
    transition,
)


class TestSyncState(unittest.TestCase):

    def setUp(self):
        self.config = SyncConfig(page_size=20, max_page_size=20)

    def _sized(self, estimate):
        return transition(initial_state(self.config), Sized(estimate), self.config)

    def test_sized_plans_pages_and_requests_first_page(self):
        state, effects = self._sized(45)

        self.assertEqual(state.phase, Phase.FETCHING)
        self.assertEqual(state.total_pages, 3)
        self.assertEqual(state.estimated_total, 45)
        self.assertIsInstance(effects[0], EmitProgress)
        self.assertEqual(effects[-1], FetchPage(0, 20))

    def test_zero_estimate_still_fetches_first_page(self):
        state, effects = self._sized(0)

        self.assertEqual(state.total_pages, 1)
        self.assertEqual(effects[-1], FetchPage(0, 20))

    def test_full_page_advances_offset(self):
        state, _ = self._sized(45)
        state, effects = transition(state, PageLoaded(20), self.config)

        self.assertEqual(state.offset, 20)
        self.assertEqual(state.accumulated, 20)
        self.assertEqual(state.percentage, 44)
        self.assertEqual(effects[-1], FetchPage(20, 20))

    def test_short_page_finishes_run(self):
        state, _ = self._sized(45)
        state, _ = transition(state, PageLoaded(20), self.config)
        state, _ = transition(state, PageLoaded(20), self.config)
        state, effects = transition(state, PageLoaded(5), self.config)

        self.assertEqual(state.phase, Phase.DONE)
        self.assertEqual(state.accumulated, 45)
        self.assertEqual(state.percentage, 100)
        self.assertEqual(len(effects), 1)
        self.assertEqual(effects[0].progress.status, RunStatus.COMPLETE)

    def test_short_page_stops_even_with_large_estimate(self):
        state, _ = self._sized(1000)
        state, effects = transition(state, PageLoaded(3), self.config)

        self.assertEqual(state.phase, Phase.DONE)
        self.assertFalse(any(isinstance(effect, FetchPage) for effect in effects))

    def test_empty_page_finishes_run(self):
        state, _ = self._sized(100)
        state, _ = transition(state, PageLoaded(0), self.config)

        self.assertEqual(state.phase, Phase.DONE)
        self.assertEqual(state.accumulated, 0)

    def test_full_page_past_estimate_extends_run(self):
        state, _ = self._sized(20)
        state, effects = transition(state, PageLoaded(20), self.config)

        self.assertEqual(state.phase, Phase.FETCHING)
        self.assertEqual(state.total_pages, 2)
        self.assertGreaterEqual(state.estimated_total, 40)
        self.assertLess(state.percentage, 100)
        self.assertEqual(effects[-1], FetchPage(20, 20))

    def test_first_page_total_hint_replaces_fallback_estimate(self):
        state, _ = transition(initial_state(self.config), Sized(300000, is_fallback=True), self.config)
        state, _ = transition(state, PageLoaded(20, total_hint=50), self.config)

        self.assertEqual(state.estimated_total, 50)
        self.assertEqual(state.total_pages, 3)

    def test_first_page_total_hint_keeps_counted_estimate(self):
        state, _ = self._sized(100)
        state, _ = transition(state, PageLoaded(20, total_hint=50), self.config)

        self.assertEqual(state.estimated_total, 100)
        self.assertEqual(state.total_pages, 5)

    def test_failures_back_off_then_retry_same_offset(self):
        state, _ = self._sized(45)

        state, effects = transition(state, PageFailed("timeout"), self.config)
        self.assertEqual(effects, [Backoff(1.0, 1), FetchPage(0, 20)])

        state, effects = transition(state, PageFailed("timeout"), self.config)
        self.assertEqual(effects, [Backoff(2.0, 2), FetchPage(0, 20)])

        state, effects = transition(state, PageLoaded(20), self.config)
        self.assertEqual(state.attempts, 0)
        self.assertEqual(effects[-1], FetchPage(20, 20))

    def test_exhausted_retries_skip_page(self):
        state, _ = self._sized(100)
        state, _ = transition(state, PageLoaded(20), self.config)
        for _ in range(2):
            state, _ = transition(state, PageFailed("boom"), self.config)
        state, effects = transition(state, PageFailed("boom"), self.config)

        self.assertEqual(effects[0], RecordFailure(20, 3, "boom"))
        self.assertEqual(effects[-1], FetchPage(40, 20))
        self.assertEqual(state.failed_offsets, (20,))
        self.assertEqual(state.phase, Phase.FETCHING)

    def test_aborts_after_three_failed_pages_without_success(self):
        state, _ = self._sized(300000)
        failures = 0
        while not state.is_terminal:
            state, effects = transition(state, PageFailed("down"), self.config)
            failures += sum(isinstance(effect, RecordFailure) for effect in effects)

        self.assertEqual(state.phase, Phase.ABORTED)
        self.assertEqual(failures, 3)
        self.assertEqual(state.failed_offsets, (0, 20, 40))
        self.assertIn("3 consecutive pages failed", state.abort_reason)
        self.assertEqual(state.progress().status, RunStatus.ABORTED)

    def test_no_abort_once_a_page_has_succeeded(self):
        state, _ = self._sized(300000)
        state, _ = transition(state, PageLoaded(20), self.config)
        for _ in range(4 * self.config.max_retries):
            state, _ = transition(state, PageFailed("down"), self.config)

        self.assertEqual(state.phase, Phase.FETCHING)
        self.assertEqual(len(state.failed_offsets), 4)

    def test_failed_last_page_finishes_run(self):
        state, _ = self._sized(40)
        state, _ = transition(state, PageLoaded(20), self.config)
        for _ in range(self.config.max_retries):
            state, effects = transition(state, PageFailed("down"), self.config)

        self.assertEqual(state.phase, Phase.DONE)
        self.assertEqual(state.percentage, 100)
        self.assertIsInstance(effects[0], RecordFailure)

    def test_cancel_aborts_and_keeps_percentage(self):
        state, _ = self._sized(45)
        state, _ = transition(state, PageLoaded(20), self.config)
        state, effects = transition(state, Cancelled(), self.config)

        self.assertEqual(state.phase, Phase.ABORTED)
        self.assertEqual(state.abort_reason, "cancelled")
        self.assertEqual(state.percentage, 44)
        self.assertEqual(effects[0].progress.status, RunStatus.ABORTED)

    def test_terminal_state_rejects_events(self):
        state, _ = self._sized(10)
        state, _ = transition(state, PageLoaded(10), self.config)

        with self.assertRaises(ValueError):
            transition(state, PageLoaded(10), self.config)

    def test_sizing_requires_sized_event(self):
        with self.assertRaises(ValueError):
            transition(initial_state(self.config), PageLoaded(20), self.config)

    def test_in_progress_percentage_rounds_half_up_and_caps(self):
        self.assertEqual(in_progress_percentage(1, 200), 1)
        self.assertEqual(in_progress_percentage(5, 200), 3)
        self.assertEqual(in_progress_percentage(200, 200), 99)
        self.assertEqual(in_progress_percentage(10, 0), 0)

    def test_backoff_delay_is_capped(self):
        config = SyncConfig(backoff_base=1, backoff_cap=3)
        self.assertEqual([config.backoff_delay(n) for n in (1, 2, 3, 4)], [1, 2, 3, 3])


if __name__ == '__main__':
    unittest.main()
