"""Protocol package initialization"""

from .result import Result, ResultType
from .encoder import encode_command, command_name
from .parser import RespParser, ParserState, decode

__all__ = [
    'Result', 'ResultType', 'encode_command', 'command_name',
    'RespParser', 'ParserState', 'decode',
]
