"""Shared test fixtures for dom_tracker tests."""

import os

os.environ['DOM_TRACKER_SETUP_LOGGING'] = 'false'

from typing import Any  # noqa: E402

import pytest  # noqa: E402

from dom_tracker.config import HistoryTreeConfig  # noqa: E402
from dom_tracker.history.processor import HistoryTreeProcessor  # noqa: E402

from helpers import FakeClock, FakePage  # noqa: E402


@pytest.fixture
def page() -> FakePage:
	fake_page = FakePage()
	fake_page.add('button', '/body/button[1]', 'Submit', id='submit')
	return fake_page


@pytest.fixture
def fake_clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
	clock = FakeClock()
	monkeypatch.setattr('dom_tracker.history.processor.time', clock)
	return clock


@pytest.fixture
def make_processor(page: FakePage, fake_clock: FakeClock):
	def factory(**config_values: Any) -> HistoryTreeProcessor:
		return HistoryTreeProcessor(page, change_applier=page, config=HistoryTreeConfig(**config_values))

	return factory
