"""Tests for fetcher dispatch."""

import json
from unittest.mock import patch

import pytest

from bye_bye_flag.exceptions import ConfigError
from bye_bye_flag.fetchers import fetch_flags
from bye_bye_flag.models.config import ManualFetcherConfig, PostHogFetcherConfig


class TestFetchFlags:
    """Test cases for fetch_flags."""

    def test_input_file_wins(self, tmp_path):
        """Test that --input is used regardless of the configured fetcher."""
        path = tmp_path / "flags.json"
        path.write_text(json.dumps([{"key": "my-flag", "keepBranch": "enabled"}]))
        config = PostHogFetcherConfig(type="posthog", project_ids=["1"])

        with patch("bye_bye_flag.fetchers.posthog.fetch_flags") as posthog_fetch:
            tasks = fetch_flags(config, path)

        posthog_fetch.assert_not_called()
        assert [t.key for t in tasks] == ["my-flag"]

    def test_posthog(self):
        config = PostHogFetcherConfig(type="posthog", project_ids=["1"])
        with patch("bye_bye_flag.fetchers.posthog.fetch_flags", return_value=[]) as posthog_fetch:
            assert fetch_flags(config) == []
        posthog_fetch.assert_called_once_with(config)

    def test_manual_requires_input(self):
        with pytest.raises(ConfigError, match="Manual fetcher requires --input flag"):
            fetch_flags(ManualFetcherConfig(type="manual"))
