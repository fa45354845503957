"""
Configuration constants for SourceCon.

All protocol constants, paths, and tunable parameters are centralized here.
"""

from __future__ import annotations

import os
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

import yaml

from .exceptions import ConfigError


# ---------------- Protocol Constants ----------------

# Packet types (client perspective). AUTH_RESPONSE and EXECCOMMAND share a
# value; the pending entry an id maps to decides which one a frame is.
SERVERDATA_AUTH = 3             # Client->Server
SERVERDATA_AUTH_RESPONSE = 2    # Server->Client
SERVERDATA_EXECCOMMAND = 2      # Client->Server
SERVERDATA_RESPONSE_VALUE = 0   # Server->Client

# Id the server answers with when the password is wrong
AUTH_FAILED_ID = -1

# Frame structure
SIZE_FIELD_LEN = 4
HEADER_SIZE = 12        # size(4) + id(4) + type(4)
TRAILER = b"\x00\x00"   # Body terminator + empty string terminator
MIN_PACKET_SIZE = 10    # id(4) + type(4) + trailer(2)

# Packet id space (signed 32-bit)
INT32_MIN = -0x80000000
INT32_MAX = 0x7FFFFFFF
RESERVED_IDS = (0, -1)
FIRST_PACKET_ID = 1


# ---------------- Limits / Timeouts ----------------

MAX_FRAME_SIZE = 64 * 1024          # Largest `size` field accepted before failing the connection
MAX_RESPONSE_SIZE = 4 * 1024 * 1024  # Largest accumulated multi-packet response
MAX_PENDING_REQUESTS = 1024         # Real requests awaiting completion

CONNECT_TIMEOUT = 10.0   # Seconds for TCP connection establishment
REQUEST_TIMEOUT = 30.0   # Seconds before a pending request is failed (None disables)
REAPER_INTERVAL = 0.25   # Reader loop wake-up for timeout checks
RECV_CHUNK_SIZE = 4096

DEFAULT_ENCODING = "utf-8"
DEFAULT_PORT = 27015


# ---------------- File Paths ----------------

CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".sourcecon")
LOG_DIR = os.path.join(CONFIG_DIR, "logs")
CONFIG_FILE = os.path.join(CONFIG_DIR, "config.yaml")


# ---------------- Logging Configuration ----------------

LOG_FILE = os.path.join(LOG_DIR, "sourcecon.log")
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5MB per log file
LOG_BACKUP_COUNT = 3  # Keep 3 rotated log files


@dataclass
class ClientConfig:
    """Runtime configuration for a SourceCon engine."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    connect_timeout: float = CONNECT_TIMEOUT
    request_timeout: Optional[float] = REQUEST_TIMEOUT
    max_frame_size: int = MAX_FRAME_SIZE
    max_response_size: int = MAX_RESPONSE_SIZE
    max_pending: int = MAX_PENDING_REQUESTS
    encoding: str = DEFAULT_ENCODING
    log_to_file: bool = False
    log_level: str = "WARNING"

    def validate(self) -> None:
        """
        Check value ranges.

        Raises:
            ConfigError: If any value is out of range
        """
        if not self.host:
            raise ConfigError("host must not be empty")
        if not 0 < self.port <= 65535:
            raise ConfigError(f"Invalid port number: {self.port} (must be 1-65535)")
        if self.connect_timeout <= 0:
            raise ConfigError("connect_timeout must be positive")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive or None")
        if self.max_frame_size < MIN_PACKET_SIZE:
            raise ConfigError(f"max_frame_size must be at least {MIN_PACKET_SIZE}")
        if self.max_response_size <= 0:
            raise ConfigError("max_response_size must be positive")
        if self.max_pending <= 0:
            raise ConfigError("max_pending must be positive")
        try:
            "".encode(self.encoding)
        except LookupError:
            raise ConfigError(f"Unknown encoding: {self.encoding}")


def ensure_config_dir() -> None:
    """Create the configuration directory if it doesn't exist."""
    Path(CONFIG_DIR).mkdir(parents=True, exist_ok=True)


def load_config_file(path: Optional[str] = None) -> dict:
    """
    Load configuration from YAML file.

    Args:
        path: Path to config file (defaults to CONFIG_FILE)

    Returns:
        Configuration dict (empty if file doesn't exist)

    Raises:
        ConfigError: If the file is not valid YAML or not a mapping
    """
    config_path = path or CONFIG_FILE

    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Malformed config file {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {config_path} must contain a mapping")
    return data


def save_default_config(path: Optional[str] = None) -> bool:
    """
    Save default configuration file.

    Args:
        path: Path to config file (defaults to CONFIG_FILE)

    Returns:
        True if saved successfully
    """
    config_path = path or CONFIG_FILE

    default_config = f"""\
# SourceCon Configuration

connection:
  # RCON server address
  host: 127.0.0.1
  port: {DEFAULT_PORT}
  # Seconds to wait for the TCP connection
  connect_timeout: {CONNECT_TIMEOUT}
  # Seconds before an unanswered request fails (null disables)
  request_timeout: {REQUEST_TIMEOUT}
  # Text encoding for commands and passwords
  encoding: {DEFAULT_ENCODING}

limits:
  # Largest single frame accepted from the server (bytes)
  max_frame_size: {MAX_FRAME_SIZE}
  # Largest accumulated multi-packet response (bytes)
  max_response_size: {MAX_RESPONSE_SIZE}
  # Requests allowed in flight at once
  max_pending: {MAX_PENDING_REQUESTS}

logging:
  # Enable file logging
  to_file: false
  # Log level: DEBUG, INFO, WARNING, ERROR
  level: WARNING
"""

    try:
        Path(config_path).parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            f.write(default_config)
        return True
    except OSError:
        return False


_SECTIONS = {
    "connection": ("host", "port", "connect_timeout", "request_timeout", "encoding"),
    "limits": ("max_frame_size", "max_response_size", "max_pending"),
}


def apply_config_file(config: ClientConfig, file_config: dict) -> None:
    """
    Apply file configuration to a client config.

    Only fields still at their dataclass default are overwritten, so values
    set explicitly in code take precedence over the file.
    """
    defaults = {f.name: f.default for f in fields(ClientConfig)}

    for section, keys in _SECTIONS.items():
        values = file_config.get(section) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        for key in keys:
            if key in values and getattr(config, key) == defaults[key]:
                setattr(config, key, values[key])

    # Logging settings
    logging_config = file_config.get("logging") or {}
    if "to_file" in logging_config and config.log_to_file == defaults["log_to_file"]:
        config.log_to_file = bool(logging_config["to_file"])
    if "level" in logging_config and config.log_level == defaults["log_level"]:
        config.log_level = str(logging_config["level"]).upper()

    config.validate()
