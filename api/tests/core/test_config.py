"""
Settings defaults and startup validation.
"""
import logging

import pytest

from ledgerjobs.core.config import Settings, _validate_settings


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, uploadthing_api_key="sk_test", **overrides)


class TestDefaults:
    def test_attachment_limits(self):
        s = _settings()
        assert s.max_attachment_size_bytes == 10 * 1024 * 1024
        assert s.attachment_size_warning_threshold == 5 * 1024 * 1024

    def test_fetch_page_size(self):
        assert _settings().export_fetch_page_size == 50


class TestValidateSettings:
    def test_defaults_are_valid(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ledgerjobs.config"):
            _validate_settings(_settings())
        assert caplog.records == []

    def test_threshold_above_max_warns(self, caplog):
        s = _settings(attachment_size_warning_threshold=20 * 1024 * 1024)
        with caplog.at_level(logging.WARNING, logger="ledgerjobs.config"):
            _validate_settings(s)
        assert "ATTACHMENT_SIZE_WARNING_THRESHOLD" in caplog.text

    def test_zero_page_size_fatal_in_production(self):
        s = _settings(environment="production", export_fetch_page_size=0)
        with pytest.raises(SystemExit):
            _validate_settings(s)
