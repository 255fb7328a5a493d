"""
resply - asyncio Redis client

Sebuah client untuk Redis Serialization Protocol (RESP) dengan:
- Streaming parser yang tahan terhadap fragmentasi read
- Connection dengan pipelining dan pub/sub
- Distributed lock berbasis algoritma Redlock
"""

__version__ = "1.0.0"

from .protocol import Result, ResultType, RespParser, encode_command
from .client import Connection, Pipeline
from .lock import Redlock

__all__ = [
    'Result', 'ResultType', 'RespParser', 'encode_command',
    'Connection', 'Pipeline', 'Redlock', '__version__',
]
