"""Tests for gateway configuration and credential normalization."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from bkash_sdk.config import PRODUCTION_BASE_URL, SANDBOX_BASE_URL, GatewayConfig
from bkash_sdk.connectors import Credentials, normalize_credential, parse_amount
from bkash_sdk.errors import MalformedResponse


class TestNormalizeCredential:
    @pytest.mark.parametrize("raw,expected", [
        ("  user  ", "user"),
        ("user%40example.com", "user@example.com"),
        ("p&amp;ss", "p&ss"),
        ("100%", "100%"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_credential(raw) == expected

    def test_credentials_from_raw(self):
        credentials = Credentials.from_raw(" user%40example.com ", "p&amp;ss", " key ", " secret ")

        assert credentials.username == "user@example.com"
        assert credentials.password == "p&ss"
        assert credentials.app_key == "key"
        assert credentials.app_secret == "secret"

    def test_repr_hides_secrets(self):
        credentials = Credentials.from_raw("merchant", "hunter2", "appkey123", "topsecret")

        text = repr(credentials)

        assert "hunter2" not in text
        assert "topsecret" not in text


class TestParseAmount:
    def test_parse(self):
        assert parse_amount("500.00") == Decimal("500.00")
        assert parse_amount(12) == Decimal("12")
        assert parse_amount(None) is None
        assert parse_amount("") is None

    def test_invalid(self):
        with pytest.raises(MalformedResponse):
            parse_amount("five hundred")


class TestGatewayConfig:
    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BKASH_USERNAME", "merchant")
        monkeypatch.setenv("BKASH_PASSWORD", "secret")
        monkeypatch.setenv("BKASH_APP_KEY", "key")
        monkeypatch.setenv("BKASH_APP_SECRET", "appsecret")
        monkeypatch.setenv("BKASH_SANDBOX", "true")
        monkeypatch.setenv("BKASH_FEE_PERCENT", "1.5")
        monkeypatch.setenv("BKASH_LOG_ENABLED", "0")

        config = GatewayConfig.from_env()

        assert config.is_configured()
        assert config.sandbox is True
        assert config.fee_percent == Decimal("1.5")
        assert config.log_enabled is False
        assert config.resolved_base_url == SANDBOX_BASE_URL

    def test_defaults(self, monkeypatch):
        for name in ("BKASH_USERNAME", "BKASH_PASSWORD", "BKASH_APP_KEY", "BKASH_APP_SECRET",
                     "BKASH_SANDBOX", "BKASH_BASE_URL"):
            monkeypatch.delenv(name, raising=False)

        config = GatewayConfig.from_env()

        assert not config.is_configured()
        assert config.resolved_base_url == PRODUCTION_BASE_URL
        assert config.timeout_seconds == 30.0

    def test_base_url_override(self):
        config = GatewayConfig(base_url="http://localhost:9000/bkash/")
        assert config.resolved_base_url == "http://localhost:9000/bkash"

    def test_blank_credentials_not_configured(self):
        config = GatewayConfig(username="u", password=" ", app_key="k", app_secret="s")
        assert not config.is_configured()

    def test_timeout_bounds(self):
        with pytest.raises(ValidationError):
            GatewayConfig(timeout_seconds=0)
        with pytest.raises(ValidationError):
            GatewayConfig(timeout_seconds=120)

    def test_credentials_normalized(self):
        config = GatewayConfig(username="a%40b", password="x&amp;y", app_key="k", app_secret="s")

        credentials = config.credentials()

        assert credentials.username == "a@b"
        assert credentials.password == "x&y"
