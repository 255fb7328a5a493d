"""
Command encoder.
Mengubah command (list of string/integer arguments) menjadi RESP bytes:
array header diikuti satu bulk string per argument.
"""

from typing import Sequence, Union

CommandArg = Union[str, bytes, int]

CRLF = b'\r\n'

# Bulk strings are binary; surrogateescape keeps undecodable bytes round-trippable
ENCODING = 'utf-8'
ENCODING_ERRORS = 'surrogateescape'


def _to_bytes(arg: CommandArg) -> bytes:
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, str):
        return arg.encode(ENCODING, ENCODING_ERRORS)
    if isinstance(arg, int) and not isinstance(arg, bool):
        # Integers dikirim sebagai decimal text
        return str(arg).encode('ascii')
    raise TypeError(f"Unsupported command argument type: {type(arg).__name__}")


def encode_command(args: Sequence[CommandArg]) -> bytes:
    """
    Serialize command dan parameter-nya ke RESP.

    Args:
        args: Command name diikuti arguments, contoh ['SET', 'a', 1]

    Returns:
        Encoded bytes, atau b'' jika args kosong atau command name kosong
        (tidak ada command yang dikirim)
    """
    if not args or not _to_bytes(args[0]):
        return b''

    parts = [b'*%d' % len(args), CRLF]
    for arg in args:
        data = _to_bytes(arg)
        parts.extend((b'$%d' % len(data), CRLF, data, CRLF))

    return b''.join(parts)


def command_name(args: Sequence[CommandArg]) -> str:
    """Lowercase command name, dipakai untuk metrics dan pipeline check"""
    if not args:
        return ''
    return _to_bytes(args[0]).decode(ENCODING, ENCODING_ERRORS).lower()
