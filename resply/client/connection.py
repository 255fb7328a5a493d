"""
Connection layer untuk komunikasi dengan satu Redis server.
Menggunakan asyncio streams untuk TCP socket.

Satu Connection memiliki tepat satu socket dan tidak aman dipakai
oleh lebih dari satu caller sekaligus.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from ..protocol import Result, ResultType, RespParser, encode_command, command_name
from ..protocol.encoder import CRLF, CommandArg
from ..utils.config import Config, parse_address
from ..utils.metrics import metrics, measure_time
from .pipeline import Pipeline

logger = logging.getLogger(__name__)

ChannelCallback = Callable[[str, str], Union[None, Awaitable[Any]]]


class ConnectionMode(Enum):
    """Mode connection"""
    IDLE = "idle"              # Request/response biasa
    SUBSCRIBED = "subscribed"  # Hanya (P)UNSUBSCRIBE, PING, QUIT yang valid


class Connection:
    """
    Redis client connection.

    Supports tiga cara pemakaian:
    - command(): single command/response
    - pipelined(): batch command dengan satu write
    - subscribe()/psubscribe() + listen_for_messages(): pub/sub
    """

    def __init__(self,
                 host: Optional[str] = None,
                 port: Optional[int] = None,
                 timeout: Optional[int] = None,
                 command_timeout: Optional[int] = None):
        """
        Args:
            host: Redis server address
            port: Redis server port
            timeout: Connect timeout dalam milliseconds
            command_timeout: Batas waktu menunggu reply dalam milliseconds,
                0 berarti tunggu tanpa batas. Tidak berlaku untuk listen loop.
        """
        self.host = host or Config.REDIS_HOST
        self.port = port or Config.REDIS_PORT
        self.timeout = Config.CONNECT_TIMEOUT if timeout is None else timeout
        self.command_timeout = Config.COMMAND_TIMEOUT if command_timeout is None else command_timeout

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._buffer = bytearray()

        # Subscription registry: channel/pattern name -> callback
        self._mode = ConnectionMode.IDLE
        self._subscriptions: Dict[str, ChannelCallback] = {}
        self._patterns: Set[str] = set()
        self._listen_task: Optional[asyncio.Task] = None

        # Statistics
        self.commands_sent = 0
        self.io_errors = 0
        self.last_error: Optional[str] = None

    @classmethod
    def from_address(cls,
                     address: str,
                     timeout: Optional[int] = None,
                     command_timeout: Optional[int] = None) -> 'Connection':
        """
        Args:
            address: Format "host[:port]", port default 6379
        """
        host, port = parse_address(address, Config.REDIS_PORT)
        return cls(host, port, timeout, command_timeout)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def mode(self) -> ConnectionMode:
        return self._mode

    def is_connected(self) -> bool:
        return self._writer is not None

    def in_subscribed_mode(self) -> bool:
        """
        Indicates if the connection is currently subscribed to any channels.

        Selama subscribed, server akan reject semua command selain
        UNSUBSCRIBE, PUNSUBSCRIBE, PING dan QUIT.
        """
        return self._mode == ConnectionMode.SUBSCRIBED

    async def __aenter__(self) -> 'Connection':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def connect(self) -> bool:
        """
        Establish TCP connection ke server.

        Returns:
            True jika connected, False jika gagal (lihat last_error)
        """
        if self.is_connected():
            return True

        timeout = self.timeout / 1000 if self.timeout else None

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            self._record_error('connect', f"Timeout connecting to {self.address}")
            return False
        except OSError as e:
            self._record_error('connect', f"Error connecting to {self.address}: {e}")
            return False

        self._buffer.clear()
        self._reset_subscriptions()
        metrics.connection_opened()
        logger.info(f"Connected to {self.address}")
        return True

    async def close(self):
        """Close connection. Aman dipanggil berkali-kali."""
        writer = self._writer
        if writer is None:
            return

        self._reader = None
        self._writer = None
        self._buffer.clear()
        self._reset_subscriptions()

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing {self.address}: {e}")

        metrics.connection_closed()
        logger.info(f"Connection to {self.address} closed")

    async def command(self, *args: CommandArg) -> Result:
        """
        Serialize command, kirim, dan tunggu reply-nya.

        Contoh:
            await connection.command('set', 'a', 1)

        Returns:
            Result dari server. Nil jika command kosong.
        """
        payload = encode_command(args)
        if not payload:
            return Result.nil()

        with measure_time() as timer:
            result = await self.send(payload)

        metrics.record_command(command_name(args), timer.elapsed)
        return result

    async def send(self, payload: bytes) -> Result:
        """
        Kirim satu encoded command dan baca reply-nya.

        Dalam subscribed mode, reply datang lewat listen_for_messages(),
        jadi method ini langsung return Nil setelah write.
        """
        error = await self._write(payload)
        if error is not None:
            return error

        self.commands_sent += 1

        if self.in_subscribed_mode():
            return Result.nil()

        return await self._read_result(self._reply_timeout())

    async def send_batch(self, payloads: List[bytes]) -> List[Result]:
        """
        Kirim semua command dalam satu write, lalu baca tepat
        len(payloads) replies. Urutan reply sama dengan urutan command.
        """
        if not payloads:
            return []

        error = await self._write(b''.join(payloads))
        if error is not None:
            return [Result.io_error(error.string) for _ in payloads]

        self.commands_sent += len(payloads)

        if self.in_subscribed_mode():
            return [Result.nil() for _ in payloads]

        timeout = self._reply_timeout()
        results = []
        for _ in payloads:
            results.append(await self._read_result(timeout))

        return results

    def pipelined(self) -> Pipeline:
        """Creates a new pipeline using this connection"""
        return Pipeline(self)

    async def subscribe(self, channel: str, callback: ChannelCallback) -> Result:
        """
        Subscribe ke channel.

        Args:
            channel: Nama channel
            callback: Dipanggil dengan (channel, message) untuk setiap message
        """
        return await self._subscribe('SUBSCRIBE', channel, callback)

    async def psubscribe(self, pattern: str, callback: ChannelCallback) -> Result:
        """
        Subscribe ke beberapa channel berdasarkan pattern.

        Message di-dispatch dengan exact lookup nama channel terhadap
        registry, bukan glob matching terhadap pattern.
        """
        self._patterns.add(pattern)
        return await self._subscribe('PSUBSCRIBE', pattern, callback)

    async def _subscribe(self, command: str, name: str, callback: ChannelCallback) -> Result:
        self._subscriptions[name] = callback
        self._mode = ConnectionMode.SUBSCRIBED

        error = await self._write(encode_command([command, name]))
        if error is not None:
            return error

        self.commands_sent += 1
        logger.debug(f"{command} {name} on {self.address}")
        return Result.nil()

    async def unsubscribe(self, *channels: str) -> Result:
        """
        Unsubscribe dari channel (semua channel jika kosong).

        Connection kembali ke IDLE setelah server mengkonfirmasi tidak ada
        subscription tersisa; konfirmasi itu dibaca oleh listen_for_messages().
        """
        names = channels or [n for n in self._subscriptions if n not in self._patterns]
        for name in names:
            self._subscriptions.pop(name, None)
        return await self.send(encode_command(['UNSUBSCRIBE', *channels]))

    async def punsubscribe(self, *patterns: str) -> Result:
        """Unsubscribe dari pattern (semua pattern jika kosong)"""
        names = patterns or list(self._patterns)
        for name in names:
            self._subscriptions.pop(name, None)
            self._patterns.discard(name)
        return await self.send(encode_command(['PUNSUBSCRIBE', *patterns]))

    async def listen_for_messages(self, fallback: Optional[ChannelCallback] = None):
        """
        Loop untuk menerima push messages.

        Setiap ["message", channel, payload] di-dispatch ke callback milik
        channel tersebut, atau ke fallback jika tidak ada. Loop berhenti saat
        connection ditutup atau server mengkonfirmasi semua subscription
        sudah di-unsubscribe.

        Args:
            fallback: Callback untuk channel yang tidak ada di registry
        """
        logger.info(f"Listening for messages on {self.address}")

        while True:
            result = await self._read_result()

            if result.type == ResultType.IO_ERROR:
                logger.info(f"Stopped listening on {self.address}: {result.string}")
                return

            if await self._handle_push(result, fallback):
                logger.info(f"Unsubscribed from all channels on {self.address}")
                return

    def start_listening(self, fallback: Optional[ChannelCallback] = None) -> asyncio.Task:
        """
        Jalankan listen_for_messages() sebagai background task.

        Returns:
            Task handle yang bisa di-await atau di-cancel
        """
        self._listen_task = asyncio.create_task(self.listen_for_messages(fallback))
        return self._listen_task

    async def stop_listening(self):
        """Cancel background listen task"""
        task = self._listen_task
        self._listen_task = None
        if task is None:
            return

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            # Callback yang raise menghentikan loop lebih awal
            logger.error(f"Listener on {self.address} failed: {e!r}")

    async def _handle_push(self, result: Result, fallback: Optional[ChannelCallback]) -> bool:
        """
        Dispatch satu push frame.

        Returns:
            True jika server mengkonfirmasi tidak ada subscription tersisa
        """
        if result.type != ResultType.ARRAY or not result.array:
            logger.debug(f"Ignoring non-push reply: {result!r}")
            return False

        elements = result.array
        kind = elements[0].string.lower()

        if kind == 'message' and len(elements) == 3:
            channel, message = elements[1].string, elements[2].string
        elif kind == 'pmessage' and len(elements) == 4:
            channel, message = elements[2].string, elements[3].string
        elif kind in ('unsubscribe', 'punsubscribe') and len(elements) == 3:
            remaining = elements[2]
            if remaining.type == ResultType.INTEGER and remaining.integer == 0:
                self._reset_subscriptions()
                return True
            return False
        else:
            logger.debug(f"Ignoring {kind} push on {self.address}")
            return False

        callback = self._subscriptions.get(channel, fallback)
        if callback is None:
            return False

        metrics.record_pubsub_message()
        outcome = callback(channel, message)
        if inspect.isawaitable(outcome):
            await outcome

        return False

    async def _write(self, payload: bytes) -> Optional[Result]:
        """
        Write payload ke socket.

        Returns:
            None jika sukses, IO_ERROR result jika gagal
        """
        writer = self._writer
        if writer is None:
            return Result.io_error(f"Not connected to {self.address}")

        try:
            writer.write(payload)
            await writer.drain()
        except OSError as e:
            return self._drop('write', f"Error writing to {self.address}: {e}")

        return None

    def _reply_timeout(self) -> Optional[float]:
        """command_timeout dalam detik, None jika tanpa batas"""
        return self.command_timeout / 1000 if self.command_timeout else None

    async def _read_result(self, timeout: Optional[float] = None) -> Result:
        """
        Baca tepat satu RESP value dari socket.

        Args:
            timeout: Batas waktu per read dalam detik, None untuk menunggu terus
        """
        parser = RespParser()

        while parser.parse(self._buffer):
            error = await self._fill_buffer(timeout)
            if error is not None:
                return error

        if parser.failed:
            logger.warning(f"Malformed reply from {self.address}")
            if parser.discard_line:
                await self._discard_line(timeout)

        return parser.result

    async def _fill_buffer(self, timeout: Optional[float]) -> Optional[Result]:
        """
        Read satu chunk ke receive buffer.

        Returns:
            None jika sukses, IO_ERROR result jika gagal
        """
        reader = self._reader
        if reader is None:
            return Result.io_error(f"Not connected to {self.address}")

        try:
            chunk = await asyncio.wait_for(reader.read(Config.READ_CHUNK_SIZE), timeout=timeout)
        except asyncio.TimeoutError:
            return self._drop('read', f"Timeout waiting for reply from {self.address}")
        except OSError as e:
            return self._drop('read', f"Error reading from {self.address}: {e}")

        if not chunk:
            return self._drop('read', f"Connection to {self.address} closed")

        self._buffer += chunk
        return None

    async def _discard_line(self, timeout: Optional[float]):
        """Buang sisa line dari frame yang rusak, reply berikutnya tetap di buffer"""
        while True:
            end = self._buffer.find(CRLF)
            if end != -1:
                logger.debug(f"Discarding {end + len(CRLF)} bytes from {self.address}")
                del self._buffer[:end + len(CRLF)]
                return

            if await self._fill_buffer(timeout) is not None:
                return

    def _drop(self, operation: str, message: str) -> Result:
        """Tandai socket tidak bisa dipakai dan return IO_ERROR result"""
        writer = self._writer
        if writer is None:
            # Sudah di-close dari context lain
            logger.debug(message)
            return Result.io_error(message)

        self._reader = None
        self._writer = None
        self._buffer.clear()
        writer.close()
        metrics.connection_closed()

        self._record_error(operation, message)
        return Result.io_error(message)

    def _record_error(self, operation: str, message: str):
        self.io_errors += 1
        self.last_error = message
        metrics.record_io_error(operation)
        logger.error(message)

    def _reset_subscriptions(self):
        self._mode = ConnectionMode.IDLE
        self._subscriptions.clear()
        self._patterns.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics"""
        return {
            'address': self.address,
            'connected': self.is_connected(),
            'mode': self._mode.value,
            'subscriptions': len(self._subscriptions),
            'commands_sent': self.commands_sent,
            'io_errors': self.io_errors,
            'last_error': self.last_error
        }

    def __repr__(self):
        return f"Connection({self.address}, {self._mode.value})"
