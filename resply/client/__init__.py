"""Client package initialization"""

from .pipeline import Pipeline
from .connection import Connection, ConnectionMode, ChannelCallback

__all__ = ['Connection', 'ConnectionMode', 'ChannelCallback', 'Pipeline']
