"""
SourceCon - A Source RCON client engine.

This package provides TCP framing, packet encoding, and multi-packet
response correlation for the Source remote console protocol.
"""

__version__ = "1.0.0"
__author__ = "SourceCon Contributors"

from .config import (
    SERVERDATA_AUTH,
    SERVERDATA_AUTH_RESPONSE,
    SERVERDATA_EXECCOMMAND,
    SERVERDATA_RESPONSE_VALUE,
    ClientConfig,
)
from .connection import ConnectionState, SourceCon
from .events import Event
from .packets import Frame
