import pytest

import freeagent_mcp.config as cfg
from freeagent_mcp.config import Settings, get_signing_secret
from freeagent_mcp.errors import ConfigurationError


def _settings(**overrides) -> Settings:
    values = {
        "freeagent_client_id": "fa-client",
        "freeagent_client_secret": "fa-secret",
        "production_url": "",
        "vercel_branch_url": "",
        "vercel_url": "",
        "base_url": "http://localhost:3000",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestPublicUrl:
    def test_default(self):
        settings = _settings()
        assert settings.public_url == "http://localhost:3000"
        assert settings.callback_url == "http://localhost:3000/oauth/callback"

    def test_base_url_trailing_slash(self):
        assert _settings(base_url="https://mcp.example.com/").callback_url == (
            "https://mcp.example.com/oauth/callback"
        )

    def test_production_url_wins(self):
        settings = _settings(
            production_url="freeagent.example.com",
            vercel_branch_url="branch.vercel.app",
            vercel_url="deploy.vercel.app",
        )
        assert settings.public_url == "https://freeagent.example.com"

    def test_vercel_branch_before_deployment(self):
        settings = _settings(vercel_branch_url="branch.vercel.app", vercel_url="deploy.vercel.app")
        assert settings.public_url == "https://branch.vercel.app"

    def test_vercel_deployment_url(self):
        assert _settings(vercel_url="deploy.vercel.app").public_url == "https://deploy.vercel.app"


def test_upstream_base():
    assert _settings().upstream_base == "https://api.freeagent.com"
    assert _settings(freeagent_use_sandbox=True).upstream_base == (
        "https://api.sandbox.freeagent.com"
    )


def test_missing_credentials():
    with pytest.raises(ConfigurationError):
        _settings(freeagent_client_secret="").require_upstream_credentials()


def test_configured_signing_secret():
    assert get_signing_secret(_settings(jwt_secret="configured")) == "configured"


def test_generated_signing_secret_is_stable(monkeypatch):
    monkeypatch.setattr(cfg, "_generated_secret", None)
    settings = _settings(jwt_secret="")

    secret = get_signing_secret(settings)
    assert len(secret) == 64
    assert get_signing_secret(settings) == secret
