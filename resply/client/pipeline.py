"""
Pipelined command batch.
Semua command dikirim dalam satu write, lalu replies dibaca
sesuai urutan pengiriman (server menjamin urutan reply per connection).
"""

import logging
from typing import List, TYPE_CHECKING

from ..protocol import Result, encode_command, command_name
from ..protocol.encoder import CommandArg
from ..utils.metrics import metrics, measure_time

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)


class Pipeline:
    """
    A pipelined redis client.

    Pipeline akan reject semua {P}{UN}SUBSCRIBE commands karena
    bentuk reply-nya berbeda dan bercampur dengan push messages.

    Contoh:
        results = await (connection.pipelined()
                         .command('incr', 'a')
                         .command('incr', 'a')
                         .send())
    """

    def __init__(self, connection: 'Connection'):
        """
        Args:
            connection: Connection yang sudah connected
        """
        self._connection = connection
        self._commands: List[bytes] = []

    def command(self, *args: CommandArg) -> 'Pipeline':
        """
        Tambahkan command ke batch.

        Raises:
            ValueError: jika command adalah (p)(un)subscribe
        """
        payload = encode_command(args)
        if not payload:
            return self

        name = command_name(args)
        if 'subscribe' in name:
            raise ValueError(f"{name.upper()} cannot be pipelined")

        self._commands.append(payload)
        return self

    def __len__(self):
        return len(self._commands)

    async def send(self) -> List[Result]:
        """
        Sends the batch of commands to the server.

        Returns:
            Results dalam urutan yang sama dengan command
        """
        commands, self._commands = self._commands, []

        with measure_time() as timer:
            results = await self._connection.send_batch(commands)

        metrics.record_command('pipeline', timer.elapsed)
        logger.debug(f"Pipeline of {len(commands)} commands took {timer.elapsed:.4f}s")
        return results
