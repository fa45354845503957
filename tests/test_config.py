"""
Tests for sourcecon.config module.
"""

import pytest
import os

from sourcecon.config import (
    ClientConfig,
    DEFAULT_PORT,
    MAX_FRAME_SIZE,
    REQUEST_TIMEOUT,
    apply_config_file,
    load_config_file,
    save_default_config,
)
from sourcecon.exceptions import ConfigError


class TestClientConfig:
    """Tests for ClientConfig validation."""

    def test_defaults_valid(self):
        """Test the default configuration validates."""
        config = ClientConfig()
        config.validate()

        assert config.port == DEFAULT_PORT
        assert config.request_timeout == REQUEST_TIMEOUT

    @pytest.mark.parametrize(
        "overrides",
        [
            {"host": ""},
            {"port": 0},
            {"port": 70000},
            {"connect_timeout": 0},
            {"request_timeout": -1},
            {"max_frame_size": 4},
            {"max_response_size": 0},
            {"max_pending": 0},
            {"encoding": "no-such-codec"},
        ],
    )
    def test_invalid_values(self, overrides):
        """Test out-of-range values are rejected."""
        config = ClientConfig(**overrides)

        with pytest.raises(ConfigError):
            config.validate()

    def test_request_timeout_disabled(self):
        """Test None disables the request timeout."""
        ClientConfig(request_timeout=None).validate()


class TestConfigFile:
    """Tests for YAML config files."""

    def test_missing_file(self, tmp_path):
        """Test a missing file yields an empty config."""
        assert load_config_file(str(tmp_path / "missing.yaml")) == {}

    def test_empty_file(self, tmp_path):
        """Test an empty file yields an empty config."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config_file(str(path)) == {}

    def test_malformed_file(self, tmp_path):
        """Test invalid YAML raises ConfigError."""
        path = tmp_path / "bad.yaml"
        path.write_text("connection: [unclosed\n")

        with pytest.raises(ConfigError):
            load_config_file(str(path))

    def test_non_mapping(self, tmp_path):
        """Test a top-level list is rejected."""
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            load_config_file(str(path))

    def test_apply_sections(self, tmp_path):
        """Test file values fill the config."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "connection:\n"
            "  host: game.example.net\n"
            "  port: 27016\n"
            "  request_timeout: 5\n"
            "limits:\n"
            "  max_frame_size: 8192\n"
            "logging:\n"
            "  to_file: true\n"
            "  level: debug\n"
        )
        config = ClientConfig()

        apply_config_file(config, load_config_file(str(path)))

        assert config.host == "game.example.net"
        assert config.port == 27016
        assert config.request_timeout == 5
        assert config.max_frame_size == 8192
        assert config.log_to_file is True
        assert config.log_level == "DEBUG"

    def test_explicit_values_win(self):
        """Test values set in code are not overwritten."""
        config = ClientConfig(port=25575)

        apply_config_file(config, {"connection": {"port": 27016, "host": "example.org"}})

        assert config.port == 25575
        assert config.host == "example.org"

    def test_apply_validates(self):
        """Test applied values are validated."""
        with pytest.raises(ConfigError):
            apply_config_file(ClientConfig(), {"connection": {"port": -5}})

    def test_bad_section(self):
        """Test a non-mapping section is rejected."""
        with pytest.raises(ConfigError):
            apply_config_file(ClientConfig(), {"limits": [1, 2]})

    def test_default_file_round_trip(self, tmp_path):
        """Test the generated default file loads to the defaults."""
        path = str(tmp_path / "sub" / "config.yaml")

        assert save_default_config(path)
        assert os.path.exists(path)

        config = ClientConfig()
        apply_config_file(config, load_config_file(path))

        assert config == ClientConfig()
        assert config.max_frame_size == MAX_FRAME_SIZE
