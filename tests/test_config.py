"""Tests for configuration loading, validation and environment overrides."""

import pytest

from jobmail.config import (
    AppConfig,
    ConfigurationError,
    QueueSettings,
    load_config,
)
from jobmail.config.duration import (
    DurationParseError,
    describe_seconds,
    parse_duration,
    validate_duration_range,
)
from jobmail.config.environment import load_environment_config
from jobmail.config.validators import check_for_warnings

ENV_VARS = (
    "DATABASE_URL",
    "OLLAMA_HOST",
    "MAILDIR_PATH",
    "LOG_LEVEL",
    "WORKER_CONCURRENCY",
    "MIN_SIMILARITY",
    "ENVIRONMENT",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Unset every jobmail variable and run from an empty directory."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_config(path, text):
    path.write_text(text, encoding="utf-8")
    return path


class TestConfigurationLoading:
    """Test configuration loading from YAML files."""

    def test_defaults_without_config_file(self, clean_env):
        """Test that a missing default config file falls back to built-in defaults."""
        app_config, env_config = load_config()

        assert app_config.filter.threshold == 0.6
        assert app_config.embedding.dimension == 384
        assert app_config.queues.enrich.backoff == 5.0
        assert app_config.queues.enrich.timeout == 120.0
        assert app_config.queues.extract.backoff == 2.0
        assert app_config.platforms[0].hostname == "linkedin"
        assert app_config.platforms[0].can_crawl is False
        assert env_config.database_url == "sqlite:///./data/jobmail.db"

    def test_finds_config_yaml_in_working_directory(self, clean_env):
        """Test the fallback search picks up ./config.yaml."""
        write_config(clean_env / "config.yaml", "filter:\n  threshold: 0.8\n")

        app_config, _ = load_config()

        assert app_config.filter.threshold == 0.8

    def test_finds_nested_config_yaml(self, clean_env):
        """Test the fallback search picks up ./config/config.yaml."""
        (clean_env / "config").mkdir()
        write_config(clean_env / "config" / "config.yaml", "scan:\n  max_messages: 7\n")

        app_config, _ = load_config()

        assert app_config.scan.max_messages == 7

    def test_durations_in_queue_settings(self, clean_env):
        """Test human and ISO-8601 durations are converted to seconds."""
        path = write_config(
            clean_env / "custom.yaml",
            "queues:\n"
            "  enrich:\n"
            "    backoff: 10s\n"
            "    timeout: PT3M\n"
            "  poll_interval: 500ms\n"
            "scan:\n"
            "  interval: 15m\n",
        )

        app_config, _ = load_config(path)

        assert app_config.queues.enrich.backoff == 10.0
        assert app_config.queues.enrich.timeout == 180.0
        assert app_config.queues.poll_interval == 0.5
        assert app_config.scan.interval == 900.0

    def test_explicit_config_file_not_found(self, clean_env):
        """Test that an explicitly named file must exist."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(clean_env / "missing.yaml")

    def test_invalid_yaml_syntax(self, clean_env):
        """Test that malformed YAML raises ConfigurationError."""
        path = write_config(clean_env / "bad.yaml", "filter: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Failed to parse YAML"):
            load_config(path)

    def test_top_level_must_be_mapping(self, clean_env):
        """Test that a YAML list at the top level is rejected."""
        path = write_config(clean_env / "list.yaml", "- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)

    def test_empty_file_uses_defaults(self, clean_env):
        """Test that an empty file is treated as an empty mapping."""
        path = write_config(clean_env / "empty.yaml", "")

        app_config, _ = load_config(path)

        defaults = AppConfig()
        assert app_config.filter == defaults.filter
        assert app_config.embedding == defaults.embedding
        assert app_config.scan == defaults.scan


class TestConfigurationValidation:
    """Test validation errors are reported readably."""

    def test_threshold_out_of_range(self, clean_env):
        """Test thresholds outside [-1, 1] are rejected."""
        path = write_config(clean_env / "c.yaml", "filter:\n  threshold: 1.5\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)

        assert any("threshold" in error for error in exc_info.value.errors)

    def test_scan_interval_too_short(self, clean_env):
        """Test scan intervals under one minute are rejected."""
        path = write_config(clean_env / "c.yaml", "scan:\n  interval: 30s\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)

        assert any("too short" in error for error in exc_info.value.errors)

    def test_duplicate_platforms(self, clean_env):
        """Test a platform label may only appear once."""
        path = write_config(
            clean_env / "c.yaml",
            "platforms:\n  - hostname: linkedin\n  - hostname: LinkedIn\n",
        )

        with pytest.raises(ConfigurationError, match="validation failed"):
            load_config(path)

    def test_invalid_job_url_pattern(self, clean_env):
        """Test extra job URL patterns must compile."""
        path = write_config(clean_env / "c.yaml", "extraction:\n  extra_job_url_patterns: ['([']\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_error_message_lists_errors_and_suggestions(self):
        """Test the rendered message carries numbered errors and suggestions."""
        error = ConfigurationError("Broken", errors=["first", "second"], suggestions=["fix it"])

        rendered = str(error)

        assert "1. first" in rendered
        assert "2. second" in rendered
        assert "- fix it" in rendered

    def test_queue_settings_for_unknown_kind(self):
        """Test looking up settings for an unknown task kind fails."""
        with pytest.raises(ValueError, match="Unknown task kind"):
            AppConfig().queue_settings("send_fax")

    def test_tracking_params_are_normalized(self):
        """Test tracking parameter names are lowercased and blanks dropped."""
        config = AppConfig.model_validate({"extraction": {"tracking_params": [" UTM_Source ", "", "Ref"]}})

        assert config.extraction.tracking_params == ["utm_source", "ref"]


class TestQueueSettings:
    """Test retry policy helpers."""

    def test_backoff_doubles_per_attempt(self):
        """Test exponential backoff from the base delay."""
        settings = QueueSettings(backoff=2, max_backoff=300, timeout=60)

        assert settings.backoff_for(1) == 2.0
        assert settings.backoff_for(2) == 4.0
        assert settings.backoff_for(3) == 8.0

    def test_backoff_is_capped(self):
        """Test a single delay never exceeds max_backoff."""
        settings = QueueSettings(backoff=5, max_backoff=30, timeout=60)

        assert settings.backoff_for(10) == 30.0

    def test_zero_backoff_allowed(self):
        """Test retries may be immediate."""
        settings = QueueSettings(backoff=0, timeout=60)

        assert settings.backoff_for(3) == 0.0

    def test_lease_covers_timeout_and_grace(self):
        """Test the lease outlives the hard timeout."""
        settings = QueueSettings(timeout="2m", lease_grace="30s")

        assert settings.lease_seconds == 150.0


class TestDurationParsing:
    """Test duration parsing utilities."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("15m", 900.0),
            ("1h", 3600.0),
            ("30s", 30.0),
            ("1d", 86400.0),
            ("1h30m", 5400.0),
            ("250ms", 0.25),
            ("PT15M", 900.0),
            ("PT1H30M", 5400.0),
            ("P1D", 86400.0),
            ("45", 45.0),
            (12, 12.0),
        ],
    )
    def test_parse_valid(self, value, expected):
        """Test accepted duration forms."""
        assert parse_duration(value) == expected

    @pytest.mark.parametrize("value", ["invalid", "15x", "PT", "P", "-5", "1h 30"])
    def test_parse_invalid_format(self, value):
        """Test malformed durations are rejected."""
        with pytest.raises(DurationParseError):
            parse_duration(value)

    def test_parse_empty_string(self):
        """Test empty string raises DurationParseError."""
        with pytest.raises(DurationParseError, match="empty"):
            parse_duration("")

    def test_zero_needs_opt_in(self):
        """Test zero is only accepted with allow_zero."""
        with pytest.raises(DurationParseError, match="zero"):
            parse_duration("0s")
        assert parse_duration("0s", allow_zero=True) == 0.0

    def test_validate_duration_range(self):
        """Test range validation messages."""
        validate_duration_range(300, min_seconds=60, max_seconds=86400)

        with pytest.raises(DurationParseError, match="too short"):
            validate_duration_range(30, min_seconds=60, max_seconds=86400)
        with pytest.raises(DurationParseError, match="too long"):
            validate_duration_range(90000, min_seconds=60, max_seconds=86400)

    def test_describe_seconds(self):
        """Test human-readable rendering."""
        assert describe_seconds(120) == "2 minutes"
        assert describe_seconds(1) == "1 second"
        assert describe_seconds(3600) == "1 hour"


class TestEnvironmentVariables:
    """Test environment variable handling."""

    def test_defaults(self, clean_env):
        """Test every variable is optional."""
        env_config = load_environment_config()

        assert env_config.ollama_host == "http://localhost:11434"
        assert env_config.worker_concurrency == 3
        assert env_config.min_similarity is None
        assert env_config.log_level is None
        assert env_config.environment == "local"

    def test_valid_values(self, clean_env, monkeypatch):
        """Test values are parsed and normalized."""
        maildir = clean_env / "Maildir"
        maildir.mkdir()
        monkeypatch.setenv("OLLAMA_HOST", "http://models:11434/")
        monkeypatch.setenv("WORKER_CONCURRENCY", "5")
        monkeypatch.setenv("MIN_SIMILARITY", "0.75")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("MAILDIR_PATH", str(maildir))

        env_config = load_environment_config()

        assert env_config.ollama_host == "http://models:11434"
        assert env_config.worker_concurrency == 5
        assert env_config.min_similarity == 0.75
        assert env_config.log_level == "DEBUG"
        assert env_config.maildir_path == str(maildir)

    def test_invalid_values_are_collected(self, clean_env, monkeypatch):
        """Test all invalid variables are reported together."""
        monkeypatch.setenv("WORKER_CONCURRENCY", "many")
        monkeypatch.setenv("MIN_SIMILARITY", "2")
        monkeypatch.setenv("OLLAMA_HOST", "localhost:11434")
        monkeypatch.setenv("MAILDIR_PATH", str(clean_env / "nope"))

        with pytest.raises(ConfigurationError) as exc_info:
            load_environment_config()

        errors = exc_info.value.errors
        assert len(errors) == 4
        assert any("WORKER_CONCURRENCY" in e for e in errors)
        assert any("MIN_SIMILARITY" in e for e in errors)
        assert any("OLLAMA_HOST" in e for e in errors)
        assert any("MAILDIR_PATH" in e for e in errors)

    def test_environment_overrides_file(self, clean_env, monkeypatch):
        """Test MIN_SIMILARITY and WORKER_CONCURRENCY fold into the app config."""
        path = write_config(
            clean_env / "c.yaml",
            "filter:\n  threshold: 0.9\nqueues:\n  enrich:\n    concurrency: 2\n",
        )
        monkeypatch.setenv("MIN_SIMILARITY", "0.5")
        monkeypatch.setenv("WORKER_CONCURRENCY", "6")

        app_config, _ = load_config(path)

        assert app_config.filter.threshold == 0.5
        # Explicit file value wins over the environment default
        assert app_config.queues.enrich.concurrency == 2
        assert app_config.queues.extract.concurrency == 6


class TestConfigurationWarnings:
    """Test soft warnings for risky settings."""

    def test_low_threshold_warns(self):
        """Test a low threshold is flagged."""
        warnings = check_for_warnings({"filter": {"threshold": 0.1}})

        assert any("threshold" in w for w in warnings)

    def test_high_concurrency_warns(self):
        """Test very high concurrency is flagged."""
        warnings = check_for_warnings({"queues": {"enrich": {"concurrency": 30}}})

        assert any("concurrency" in w for w in warnings)

    def test_short_scan_interval_warns(self):
        """Test scan intervals under five minutes are flagged."""
        warnings = check_for_warnings({"scan": {"interval": "2m"}})

        assert any("scan.interval" in w for w in warnings)

    def test_defaults_do_not_warn(self):
        """Test an empty config produces no warnings."""
        assert check_for_warnings({}) == []

    def test_warnings_are_emitted_on_load(self, clean_env):
        """Test load_config emits UserWarnings."""
        path = write_config(clean_env / "c.yaml", "filter:\n  threshold: 0.1\n")

        with pytest.warns(UserWarning, match="threshold"):
            load_config(path)
