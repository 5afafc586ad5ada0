"""Tests for source_tracking.config: env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models). This tests the server
bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from source_tracking.config import Config, load_config, validate_config

ORG_ENV_VARS = (
    "ORG_INSTANCE_URL",
    "ORG_USERNAME",
    "ORG_ACCESS_TOKEN",
    "ORG_ID",
    "ORG_API_VERSION",
    "ORG_INSECURE",
    "ORG_DEBUG",
    "ORG_MAX_PARALLEL_REQUESTS",
)


@pytest.fixture
def clean_env(monkeypatch):
    for var in ORG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch


@pytest.fixture
def org_env(clean_env):
    clean_env.setenv("ORG_INSTANCE_URL", "https://env.my.salesforce.com")
    clean_env.setenv("ORG_USERNAME", "env@example.com")
    clean_env.setenv("ORG_ACCESS_TOKEN", "env-token")
    clean_env.setenv("ORG_ID", "00DENV")
    return clean_env


def _config(**overrides) -> Config:
    values = {
        "instance_url": "https://example.my.salesforce.com",
        "username": "dev@example.com",
        "access_token": "token",
        "org_id": "00D000000000001",
    }
    values.update(overrides)
    return Config(**values)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config(): URL format and credential checks."""

    def test_valid_config(self):
        validate_config(_config())

    def test_http_url_valid(self):
        validate_config(_config(instance_url="http://localhost:8080"))

    @pytest.mark.parametrize("url", ["example.com", "ftp://example.com"])
    def test_invalid_scheme(self, url):
        with pytest.raises(
            ValueError, match="must start with http:// or https://"
        ):
            validate_config(_config(instance_url=url))

    def test_empty_host(self):
        with pytest.raises(ValueError, match="must include a hostname"):
            validate_config(_config(instance_url="https://"))

    def test_trailing_slash_stripped(self):
        config = _config(instance_url="https://example.my.salesforce.com/")
        validate_config(config)
        assert config.instance_url == "https://example.my.salesforce.com"

    @pytest.mark.parametrize(
        "field,message",
        [
            ("username", "Username cannot be empty"),
            ("access_token", "Access token cannot be empty"),
            ("org_id", "Org id cannot be empty"),
        ],
    )
    def test_blank_credentials(self, field, message):
        with pytest.raises(ValueError, match=message):
            validate_config(_config(**{field: "   "}))

    @pytest.mark.parametrize("version", ["60", "v60.0", "60.00"])
    def test_invalid_api_version(self, version):
        with pytest.raises(ValueError, match="Invalid API version"):
            validate_config(_config(api_version=version))

    def test_insecure_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="source_tracking.config"):
            validate_config(_config(insecure=True))
        assert "SSL verification disabled" in caplog.text


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config(): env vars, CLI overrides, boolean parsing."""

    def test_load_from_env_vars(self, org_env):
        config = load_config()
        assert config.instance_url == "https://env.my.salesforce.com"
        assert config.username == "env@example.com"
        assert config.access_token == "env-token"
        assert config.org_id == "00DENV"
        assert config.api_version == "60.0"
        assert config.max_parallel_requests == 5

    def test_cli_args_override_env(self, org_env):
        config = load_config(
            instance_url="https://cli.my.salesforce.com",
            username="cli@example.com",
            access_token="cli-token",
            org_id="00DCLI",
        )
        assert config.instance_url == "https://cli.my.salesforce.com"
        assert config.username == "cli@example.com"
        assert config.access_token == "cli-token"
        assert config.org_id == "00DCLI"

    @pytest.mark.parametrize(
        "missing,message",
        [
            ("ORG_INSTANCE_URL", "Instance URL not found"),
            ("ORG_USERNAME", "Username not found"),
            ("ORG_ACCESS_TOKEN", "Access token not found"),
            ("ORG_ID", "Org id not found"),
        ],
    )
    def test_missing_required_value(self, org_env, missing, message):
        org_env.delenv(missing)
        with pytest.raises(ValueError, match=message):
            load_config()

    def test_api_version_from_env(self, org_env):
        org_env.setenv("ORG_API_VERSION", "61.0")
        assert load_config().api_version == "61.0"

    @pytest.mark.parametrize("value", ["true", "1", "YES", "on"])
    def test_insecure_truthy_values(self, org_env, value):
        org_env.setenv("ORG_INSECURE", value)
        assert load_config().insecure is True

    @pytest.mark.parametrize("value", ["false", "0", "no"])
    def test_insecure_falsy_values(self, org_env, value):
        org_env.setenv("ORG_INSECURE", value)
        assert load_config().insecure is False

    def test_debug_from_env(self, org_env):
        org_env.setenv("ORG_DEBUG", "true")
        assert load_config().debug is True

    def test_cli_insecure_overrides_env(self, org_env):
        org_env.setenv("ORG_INSECURE", "false")
        assert load_config(insecure=True).insecure is True

    def test_max_parallel_from_env(self, org_env):
        org_env.setenv("ORG_MAX_PARALLEL_REQUESTS", "10")
        assert load_config().max_parallel_requests == 10

    @pytest.mark.parametrize("value", ["abc", "0", "-1", "101"])
    def test_max_parallel_invalid(self, org_env, value):
        org_env.setenv("ORG_MAX_PARALLEL_REQUESTS", value)
        with pytest.raises(ValueError, match="ORG_MAX_PARALLEL_REQUESTS"):
            load_config()

    def test_values_are_stripped(self, org_env):
        org_env.setenv("ORG_INSTANCE_URL", "  https://env.my.salesforce.com/  ")
        org_env.setenv("ORG_USERNAME", "  env@example.com  ")
        config = load_config()
        assert config.instance_url == "https://env.my.salesforce.com"
        assert config.username == "env@example.com"


# -------------------------------------------------------------------------
# load_config() with yaml_fallbacks
# -------------------------------------------------------------------------


class TestLoadConfigWithYamlFallbacks:
    """YAML values are the lowest-priority source."""

    YAML = {
        "instance_url": "https://yaml.my.salesforce.com",
        "username": "yaml@example.com",
        "access_token": "yaml-token",
        "org_id": "00DYAML",
        "api_version": "59.0",
        "insecure": True,
        "max_parallel_requests": 3,
    }

    def test_yaml_used_when_no_env_or_cli(self, clean_env):
        config = load_config(yaml_fallbacks=self.YAML)
        assert config.instance_url == "https://yaml.my.salesforce.com"
        assert config.org_id == "00DYAML"
        assert config.api_version == "59.0"
        assert config.insecure is True
        assert config.max_parallel_requests == 3

    def test_env_overrides_yaml(self, org_env):
        org_env.setenv("ORG_MAX_PARALLEL_REQUESTS", "8")
        org_env.setenv("ORG_INSECURE", "false")
        config = load_config(yaml_fallbacks=self.YAML)
        assert config.instance_url == "https://env.my.salesforce.com"
        assert config.max_parallel_requests == 8
        assert config.insecure is False

    def test_cli_overrides_env_and_yaml(self, org_env):
        config = load_config(org_id="00DCLI", yaml_fallbacks=self.YAML)
        assert config.org_id == "00DCLI"

    def test_partial_yaml_with_env_filling_gaps(self, clean_env):
        clean_env.setenv("ORG_ACCESS_TOKEN", "env-token")
        fallbacks = {k: v for k, v in self.YAML.items() if k != "access_token"}
        config = load_config(yaml_fallbacks=fallbacks)
        assert config.access_token == "env-token"
        assert config.username == "yaml@example.com"
