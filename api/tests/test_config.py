"""Tests for settings, startup checks and small API helpers.

Covers:
- APISettings env prefix, CORS wildcard rejection, provider id lookups
- Lifespan refuses to start in production with the dev JWT secret
- Lemon Squeezy signature verification
- JSONFormatter output
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging

import pytest
from fastapi import FastAPI
from pydantic import ValidationError
from velocity_core.plans.catalog import PlanTier

from velocity_api.config import DEV_JWT_SECRET, APISettings, PlatformEnv
from velocity_api.main import lifespan
from velocity_api.middleware.json_formatter import JSONFormatter
from velocity_api.services.lemon_service import verify_lemon_signature

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestAPISettings:
    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVVELOCITY_PLATFORM_ENV", "staging")
        monkeypatch.setenv("DEVVELOCITY_OPENAI_MODEL", "gpt-4.1")
        settings = APISettings()
        assert settings.platform_env is PlatformEnv.STAGING
        assert settings.openai_model == "gpt-4.1"

    def test_wildcard_cors_with_credentials_rejected(self) -> None:
        with pytest.raises(ValidationError):
            APISettings(cors_origins=["*"], cors_allow_credentials=True)

    def test_wildcard_cors_without_credentials(self) -> None:
        settings = APISettings(cors_origins=["*"], cors_allow_credentials=False)
        assert settings.cors_origins == ["*"]

    def test_price_and_variant_lookup(self) -> None:
        settings = APISettings(stripe_price_id_team="price_team", lemon_variant_startup="101")
        assert settings.stripe_price_id(PlanTier.TEAM) == "price_team"
        assert settings.tier_for_stripe_price("price_team") is PlanTier.TEAM
        assert settings.tier_for_stripe_price("price_other") is None
        assert settings.tier_for_stripe_price("") is None
        assert settings.tier_for_lemon_variant("101") is PlanTier.STARTUP


class TestLifespan:
    @pytest.mark.asyncio
    async def test_refuses_dev_secret_in_production(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DEVVELOCITY_PLATFORM_ENV", "production")
        monkeypatch.setenv("DEVVELOCITY_SUPABASE_JWT_SECRET", DEV_JWT_SECRET)
        with pytest.raises(RuntimeError, match="Refusing to start"):
            async with lifespan(FastAPI()):
                pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestLemonSignature:
    def test_valid(self) -> None:
        body = b'{"meta": {}}'
        signature = hmac.new(b"secret", body, hashlib.sha256).hexdigest()
        assert verify_lemon_signature(body, signature, "secret") is True

    def test_tampered_body(self) -> None:
        signature = hmac.new(b"secret", b"{}", hashlib.sha256).hexdigest()
        assert verify_lemon_signature(b'{"a": 1}', signature, "secret") is False

    def test_missing_secret_or_signature(self) -> None:
        assert verify_lemon_signature(b"{}", "abc", "") is False
        assert verify_lemon_signature(b"{}", None, "secret") is False


class TestJSONFormatter:
    def test_extra_fields(self) -> None:
        record = logging.LogRecord("velocity_api.test", logging.INFO, __file__, 1, "billed %s", ("org-acme",), None)
        record.org_id = "org-acme"
        payload = json.loads(JSONFormatter().format(record))
        assert payload["message"] == "billed org-acme"
        assert payload["level"] == "INFO"
        assert payload["org_id"] == "org-acme"
        assert "exc_info" not in payload
