"""
Shared fixtures.
FakeRedisServer adalah Redis server minimal in-process (asyncio) sehingga
test tidak butuh Redis asli. Request di-decode dengan RespParser.
"""

import asyncio
import fnmatch
import time
from typing import Dict, List, Optional, Set, Tuple

import pytest
import pytest_asyncio

from resply.client import Connection
from resply.lock import UNLOCK_SCRIPT
from resply.protocol import RespParser


class SimpleReply(str):
    """Reply sebagai simple string (+)"""


class ErrorReply(str):
    """Reply sebagai error (-)"""


def encode_reply(value) -> bytes:
    """Encode Python value ke RESP reply"""
    if value is None:
        return b'$-1\r\n'
    if isinstance(value, ErrorReply):
        return f"-{value}\r\n".encode()
    if isinstance(value, SimpleReply):
        return f"+{value}\r\n".encode()
    if isinstance(value, int):
        return b':%d\r\n' % value
    if isinstance(value, str):
        value = value.encode('utf-8', 'surrogateescape')
    if isinstance(value, bytes):
        return b'$%d\r\n%s\r\n' % (len(value), value)
    if isinstance(value, list):
        return b'*%d\r\n' % len(value) + b''.join(encode_reply(v) for v in value)
    raise TypeError(f"cannot encode {value!r}")


OK = SimpleReply('OK')


class FakeRedisServer:
    """
    Supported commands: PING, ECHO, SET [NX] [PX|EX], GET, DEL, MGET, INCR,
    EVAL (unlock script), PUBLISH, SUBSCRIBE, PSUBSCRIBE, UNSUBSCRIBE,
    PUNSUBSCRIBE.
    """

    def __init__(self):
        self.host = '127.0.0.1'
        self.port = 0

        # key -> (value, expires_at)
        self.store: Dict[str, Tuple[str, Optional[float]]] = {}
        self.channels: Dict[str, Set[asyncio.StreamWriter]] = {}
        self.patterns: Dict[str, Set[asyncio.StreamWriter]] = {}

        # Raw reply untuk command tertentu (uppercase name -> bytes)
        self.overrides: Dict[str, bytes] = {}

        # Log semua command yang diterima
        self.commands: List[List[str]] = []

        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: Set[asyncio.StreamWriter] = set()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def start(self):
        self._server = await asyncio.start_server(self._handle_client, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        if self._server is None:
            return
        self._server.close()
        for writer in list(self._clients):
            writer.close()
        await self._server.wait_closed()
        self._server = None

    def disconnect_clients(self):
        """Putuskan semua client tanpa stop server"""
        for writer in list(self._clients):
            writer.close()

    def get(self, key: str) -> Optional[str]:
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            del self.store[key]
            return None
        return value

    def count_commands(self, name: str) -> int:
        return sum(1 for args in self.commands if args[0].upper() == name.upper())

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._clients.add(writer)
        buffer = bytearray()

        try:
            while True:
                parser = RespParser()
                while parser.parse(buffer):
                    chunk = await reader.read(4096)
                    if not chunk:
                        return
                    buffer += chunk

                args = [element.string for element in parser.result.array]
                if not args:
                    continue

                writer.write(self._execute(args, writer))
                await writer.drain()
        except OSError:
            pass
        finally:
            self._drop_subscriber(writer)
            self._clients.discard(writer)
            writer.close()

    def _execute(self, args: List[str], writer: asyncio.StreamWriter) -> bytes:
        self.commands.append(args)
        name = args[0].upper()

        if name in self.overrides:
            return self.overrides[name]

        handler = getattr(self, f"_cmd_{name.lower()}", None)
        if handler is None:
            return encode_reply(ErrorReply(f"ERR unknown command '{args[0]}'"))

        return handler(args[1:], writer)

    def _subscription_count(self, writer: asyncio.StreamWriter) -> int:
        return (sum(1 for subs in self.channels.values() if writer in subs) +
                sum(1 for subs in self.patterns.values() if writer in subs))

    def _drop_subscriber(self, writer: asyncio.StreamWriter):
        for registry in (self.channels, self.patterns):
            for name in list(registry):
                registry[name].discard(writer)
                if not registry[name]:
                    del registry[name]

    def _cmd_ping(self, args, writer):
        if self._subscription_count(writer):
            return encode_reply(['pong', args[0] if args else ''])
        if args:
            return encode_reply(args[0])
        return encode_reply(SimpleReply('PONG'))

    def _cmd_echo(self, args, writer):
        return encode_reply(args[0])

    def _cmd_set(self, args, writer):
        key, value = args[0], args[1]
        options = [a.upper() for a in args[2:]]
        expires_at = None

        if 'PX' in options:
            expires_at = time.monotonic() + int(args[2 + options.index('PX') + 1]) / 1000
        elif 'EX' in options:
            expires_at = time.monotonic() + int(args[2 + options.index('EX') + 1])

        if 'NX' in options and self.get(key) is not None:
            return encode_reply(None)

        self.store[key] = (value, expires_at)
        return encode_reply(OK)

    def _cmd_get(self, args, writer):
        return encode_reply(self.get(args[0]))

    def _cmd_del(self, args, writer):
        deleted = 0
        for key in args:
            if self.get(key) is not None:
                del self.store[key]
                deleted += 1
        return encode_reply(deleted)

    def _cmd_mget(self, args, writer):
        return encode_reply([self.get(key) for key in args])

    def _cmd_incr(self, args, writer):
        current = self.get(args[0]) or '0'
        try:
            value = int(current) + 1
        except ValueError:
            return encode_reply(ErrorReply('ERR value is not an integer or out of range'))
        self.store[args[0]] = (str(value), None)
        return encode_reply(value)

    def _cmd_eval(self, args, writer):
        script, numkeys = args[0], int(args[1])
        keys, argv = args[2:2 + numkeys], args[2 + numkeys:]

        if script != UNLOCK_SCRIPT:
            return encode_reply(ErrorReply('ERR unsupported script'))

        if self.get(keys[0]) == argv[0]:
            del self.store[keys[0]]
            return encode_reply(1)
        return encode_reply(0)

    def _cmd_publish(self, args, writer):
        channel, message = args[0], args[1]
        receivers = 0

        for subscriber in self.channels.get(channel, ()):
            subscriber.write(encode_reply(['message', channel, message]))
            receivers += 1

        for pattern, subscribers in self.patterns.items():
            if fnmatch.fnmatchcase(channel, pattern):
                for subscriber in subscribers:
                    subscriber.write(encode_reply(['pmessage', pattern, channel, message]))
                    receivers += 1

        return encode_reply(receivers)

    def _subscribe(self, kind, registry, names, writer):
        replies = []
        for name in names:
            registry.setdefault(name, set()).add(writer)
            replies.append(encode_reply([kind, name, self._subscription_count(writer)]))
        return b''.join(replies)

    def _unsubscribe(self, kind, registry, names, writer):
        names = names or [name for name, subs in registry.items() if writer in subs]
        if not names:
            return encode_reply([kind, None, self._subscription_count(writer)])

        replies = []
        for name in names:
            subscribers = registry.get(name)
            if subscribers is not None:
                subscribers.discard(writer)
                if not subscribers:
                    del registry[name]
            replies.append(encode_reply([kind, name, self._subscription_count(writer)]))
        return b''.join(replies)

    def _cmd_subscribe(self, args, writer):
        return self._subscribe('subscribe', self.channels, args, writer)

    def _cmd_psubscribe(self, args, writer):
        return self._subscribe('psubscribe', self.patterns, args, writer)

    def _cmd_unsubscribe(self, args, writer):
        return self._unsubscribe('unsubscribe', self.channels, args, writer)

    def _cmd_punsubscribe(self, args, writer):
        return self._unsubscribe('punsubscribe', self.patterns, args, writer)


class SilentServer:
    """Server yang menerima TCP connection tapi tidak pernah reply"""

    def __init__(self):
        self.host = '127.0.0.1'
        self.port = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: Set[asyncio.StreamWriter] = set()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def start(self):
        self._server = await asyncio.start_server(self._handle_client, self.host, 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self._server.close()
        for writer in list(self._clients):
            writer.close()
        await self._server.wait_closed()

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._clients.add(writer)
        try:
            while await reader.read(4096):
                pass
        except OSError:
            pass
        finally:
            self._clients.discard(writer)
            writer.close()


async def _wait_until(predicate, timeout: float = 2.0):
    """Poll sampai predicate() True"""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest_asyncio.fixture
async def redis_server():
    server = FakeRedisServer()
    await server.start()
    yield server
    await server.stop()


@pytest_asyncio.fixture
async def redis_servers():
    """Lima instance independen untuk Redlock"""
    servers = [FakeRedisServer() for _ in range(5)]
    for server in servers:
        await server.start()
    yield servers
    for server in servers:
        await server.stop()


@pytest_asyncio.fixture
async def silent_servers():
    """Dua instance yang hang setelah connect"""
    servers = [SilentServer() for _ in range(2)]
    for server in servers:
        await server.start()
    yield servers
    for server in servers:
        await server.stop()


@pytest_asyncio.fixture
async def connection(redis_server):
    conn = Connection(redis_server.host, redis_server.port)
    assert await conn.connect()
    yield conn
    await conn.close()
