"""
A streaming parser for RESP.

Parser ini adalah state machine yang bisa di-resume: data boleh datang
dalam potongan (chunk) sembarang, misalnya length line terpisah dari
payload-nya. State disimpan di antara pemanggilan parse().

Ditulis berdasarkan <https://redis.io/topics/protocol>.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
import logging

from .encoder import CRLF, ENCODING, ENCODING_ERRORS
from .result import Result, ResultType

logger = logging.getLogger(__name__)

# Type sigils (byte pertama dari setiap frame)
SIMPLE_STRING = ord('+')
ERROR = ord('-')
INTEGER = ord(':')
BULK_STRING = ord('$')
ARRAY = ord('*')

# Simple string, error dan integer tidak punya length, dibaca sampai CRLF
READ_UNTIL_EOL = -1

PARSE_ERROR = "Parsing error."


class ParserState(Enum):
    """Current internal parser state"""
    NEED_TYPE = "need_type"  # Butuh type sigil
    NEED_SIZE = "need_size"  # Butuh length line (bulk string / array)
    NEED_DATA = "need_data"  # Butuh (lebih banyak) data
    FINISHED = "finished"


@dataclass
class ArrayFrame:
    """Satu level nesting: array yang sedang diisi dan sisa element-nya"""
    result: Result
    remaining: int


class RespParser:
    """
    Streaming parser untuk satu RESP value.

    Contoh penggunaan:
        parser = RespParser()
        buffer = bytearray()
        while parser.parse(buffer):
            buffer += await reader.read(4096)
        result = parser.result

    Bytes yang tidak dipakai (awal dari value berikutnya) tetap
    tertinggal di buffer.
    """

    def __init__(self):
        self.state = ParserState.NEED_TYPE
        self._result: Optional[Result] = None
        self._current: Optional[Result] = None
        self._remaining_bytes = READ_UNTIL_EOL
        self._data = bytearray()
        self._stack: List[ArrayFrame] = []
        self.failed = False
        # True jika failure terjadi di tengah line; sisa line masih di buffer
        self.discard_line = False

    @property
    def result(self) -> Result:
        """
        Returns the decoded result.

        Hanya valid setelah parse() mengembalikan False.
        """
        if self._result is None:
            return Result.nil()
        return self._result

    def is_finished(self) -> bool:
        return self.state == ParserState.FINISHED

    def depth(self) -> int:
        """Jumlah array yang sedang terbuka"""
        return len(self._stack)

    def parse(self, buffer: bytearray) -> bool:
        """
        Consume bytes dari depan buffer sejauh mungkin.

        Args:
            buffer: Receive buffer milik caller, di-consume in place

        Returns:
            True jika masih butuh data, False jika value sudah selesai
        """
        while self.state != ParserState.FINISHED:
            if self.state == ParserState.NEED_TYPE:
                if not buffer:
                    break
                type_byte = buffer[0]
                del buffer[:1]
                self._parse_type(type_byte)

            elif self.state == ParserState.NEED_SIZE:
                line = self._read_line(buffer)
                if line is None:
                    break
                self._parse_size(line)

            elif not self._parse_data(buffer):
                break

        return self.state != ParserState.FINISHED

    @staticmethod
    def _read_line(buffer: bytearray) -> Optional[bytes]:
        """Ambil satu line tanpa CRLF, atau None jika line belum lengkap"""
        end = buffer.find(CRLF)
        if end == -1:
            return None
        line = bytes(buffer[:end])
        del buffer[:end + len(CRLF)]
        return line

    def _parse_type(self, type_byte: int):
        """Set state sesuai type untuk parsing selanjutnya"""
        if type_byte == SIMPLE_STRING:
            self._begin(ResultType.STRING, ParserState.NEED_DATA)
        elif type_byte == ERROR:
            self._begin(ResultType.PROTOCOL_ERROR, ParserState.NEED_DATA)
        elif type_byte == INTEGER:
            self._begin(ResultType.INTEGER, ParserState.NEED_DATA)
        elif type_byte == BULK_STRING:
            self._begin(ResultType.STRING, ParserState.NEED_SIZE)
        elif type_byte == ARRAY:
            self._begin(ResultType.ARRAY, ParserState.NEED_SIZE)
        else:
            logger.debug(f"Unknown type byte {type_byte!r}")
            self._fail(discard_line=True)

    def _begin(self, result_type: ResultType, state: ParserState):
        # Setiap element array adalah value baru dengan type sendiri
        self._current = Result(type=result_type)
        self._remaining_bytes = READ_UNTIL_EOL
        self._data = bytearray()
        self.state = state

    def _parse_size(self, line: bytes):
        try:
            size = int(line)
        except ValueError:
            self._fail()
            return

        if size == -1:
            self._complete(Result.nil())
        elif size < -1:
            self._fail()
        elif self._current.type == ResultType.ARRAY:
            if size == 0:
                self._complete(self._current)
            else:
                self._stack.append(ArrayFrame(self._current, size))
                self._current = None
                self.state = ParserState.NEED_TYPE
        else:
            self._remaining_bytes = size
            self.state = ParserState.NEED_DATA

    def _parse_data(self, buffer: bytearray) -> bool:
        """
        Consume data dan masukkan ke current value.

        Returns:
            False jika data di buffer belum cukup
        """
        current = self._current

        if self._remaining_bytes == READ_UNTIL_EOL:
            line = self._read_line(buffer)
            if line is None:
                return False

            if current.type == ResultType.INTEGER:
                try:
                    current.integer = int(line)
                except ValueError:
                    self._fail()
                    return True
            else:
                current.string = line.decode(ENCODING, ENCODING_ERRORS)

            self._complete(current)
            return True

        if self._remaining_bytes > 0:
            if not buffer:
                return False
            chunk = buffer[:self._remaining_bytes]
            del buffer[:len(chunk)]
            self._data += chunk
            self._remaining_bytes -= len(chunk)
            if self._remaining_bytes > 0:
                return False

        # Payload lengkap, tinggal CRLF penutup
        if len(buffer) < len(CRLF):
            return False
        if buffer[:len(CRLF)] != CRLF:
            self._fail(discard_line=True)
            return True
        del buffer[:len(CRLF)]

        current.string = bytes(self._data).decode(ENCODING, ENCODING_ERRORS)
        self._complete(current)
        return True

    def _complete(self, value: Result):
        """Tutup satu value, lalu naik ke array parent jika ada"""
        self._current = None

        while self._stack:
            frame = self._stack[-1]
            frame.result.array.append(value)
            frame.remaining -= 1

            if frame.remaining > 0:
                self.state = ParserState.NEED_TYPE
                return

            self._stack.pop()
            value = frame.result

        self._result = value
        self.state = ParserState.FINISHED

    def _fail(self, discard_line: bool = False):
        """Terminal parse failure untuk value ini"""
        self._stack.clear()
        self._current = None
        self._result = Result.protocol_error(PARSE_ERROR)
        self.failed = True
        self.discard_line = discard_line
        self.state = ParserState.FINISHED


def decode(data: bytes) -> Result:
    """
    Decode satu RESP value yang sudah lengkap di memory.

    Raises:
        ValueError: jika data belum membentuk value yang lengkap
    """
    buffer = bytearray(data)
    parser = RespParser()
    if parser.parse(buffer):
        raise ValueError("Incomplete RESP data")
    return parser.result


# Test code
if __name__ == "__main__":
    samples = [
        b"+PONG\r\n",
        b":42\r\n",
        b"$-1\r\n",
        b"*3\r\n$1\r\n1\r\n$1\r\n2\r\n$-1\r\n",
        b"-ERR unknown command\r\n",
    ]

    for sample in samples:
        print(f"{sample!r} -> {decode(sample)!r}")
