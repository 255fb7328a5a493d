"""
Result value model.
Setiap reply dari server (atau kegagalan transport) direpresentasikan
sebagai satu Result dengan tepat satu ResultType yang aktif.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List


class ResultType(Enum):
    """Tipe-tipe reply"""
    STRING = "string"                  # Simple string atau bulk string
    INTEGER = "integer"
    ARRAY = "array"
    PROTOCOL_ERROR = "protocol_error"  # Error dari server atau parser
    IO_ERROR = "io_error"              # Transport failure
    NIL = "nil"                        # Bulk string / array dengan length -1


@dataclass
class Result:
    """
    Holds the response of a command.

    Field yang dipakai tergantung type:
    - string: STRING, PROTOCOL_ERROR, IO_ERROR
    - integer: INTEGER
    - array: ARRAY (elements adalah Result juga, nesting bebas)
    """
    type: ResultType = ResultType.NIL
    string: str = ''
    integer: int = 0
    array: List['Result'] = field(default_factory=list)

    @classmethod
    def nil(cls) -> 'Result':
        return cls()

    @classmethod
    def from_string(cls, value: str) -> 'Result':
        return cls(type=ResultType.STRING, string=value)

    @classmethod
    def from_integer(cls, value: int) -> 'Result':
        return cls(type=ResultType.INTEGER, integer=value)

    @classmethod
    def from_array(cls, values: List['Result']) -> 'Result':
        return cls(type=ResultType.ARRAY, array=list(values))

    @classmethod
    def protocol_error(cls, message: str) -> 'Result':
        return cls(type=ResultType.PROTOCOL_ERROR, string=message)

    @classmethod
    def io_error(cls, message: str) -> 'Result':
        return cls(type=ResultType.IO_ERROR, string=message)

    def is_nil(self) -> bool:
        return self.type == ResultType.NIL

    def is_error(self) -> bool:
        """True untuk PROTOCOL_ERROR dan IO_ERROR"""
        return self.type in (ResultType.PROTOCOL_ERROR, ResultType.IO_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        """Convert result ke dictionary untuk JSON serialization"""
        if self.type == ResultType.ARRAY:
            value: Any = [element.to_dict() for element in self.array]
        elif self.type == ResultType.INTEGER:
            value = self.integer
        elif self.type == ResultType.NIL:
            value = None
        else:
            value = self.string

        return {'type': self.type.value, 'value': value}

    def __str__(self) -> str:
        """
        Stringify result untuk ditampilkan di CLI.

        Error diberi prefix "(error) ", Nil menjadi "(nil)",
        dan setiap element array ditulis di baris sendiri.
        """
        if self.is_error():
            return f"(error) {self.string}"
        if self.type == ResultType.STRING:
            return self.string
        if self.type == ResultType.INTEGER:
            return str(self.integer)
        if self.type == ResultType.ARRAY:
            if not self.array:
                return "(empty list or set)"
            return "\n".join(str(element) for element in self.array)
        return "(nil)"
