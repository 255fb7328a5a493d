"""
Distributed lock berdasarkan algoritma Redlock.

Lock di-acquire pada N Redis instance yang independen. Lock dianggap
valid jika mayoritas (N/2 + 1) instance berhasil di-lock dan sisa
waktu validity (TTL - elapsed - clock drift) masih positif.

See https://redis.io/topics/distlock
"""

import asyncio
import logging
import random
import secrets
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from ..client import Connection
from ..protocol import Result, ResultType
from ..utils.config import Config
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)

# Hapus key hanya jika value-nya masih milik kita
UNLOCK_SCRIPT = (
    'if redis.call("get", KEYS[1]) == ARGV[1] then\n'
    '    return redis.call("del", KEYS[1])\n'
    'else\n'
    '    return 0\n'
    'end'
)

# Clock drift = TTL / CLOCK_DRIFT_DIV
CLOCK_DRIFT_DIV = 100

LOCK_VALUE_BYTES = 20

BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def to_base36(number: int) -> str:
    if number == 0:
        return '0'

    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(BASE36_DIGITS[remainder])

    return ''.join(reversed(digits))


def generate_lock_value() -> str:
    """Generates a random, unique lock value (base-36)"""
    return to_base36(int.from_bytes(secrets.token_bytes(LOCK_VALUE_BYTES), 'big'))


class Redlock:
    """
    Distributed lock di atas beberapa Redis instance.

    Contoh penggunaan:
        async with Redlock('my-resource', ['localhost:6379', 'localhost:6380']) as rlock:
            validity = await rlock.lock(1000)
            if validity:
                ...  # critical section, selesai sebelum validity ms
    """

    def __init__(self,
                 resource_name: str,
                 instances: Sequence[Union[str, Connection]],
                 retry_count: Optional[int] = None,
                 retry_delay_max: Optional[int] = None,
                 instance_timeout: Optional[int] = None):
        """
        Args:
            resource_name: Nama lock (key di Redis)
            instances: List of "host[:port]" atau Connection objects
            retry_count: Berapa kali lock() mencoba acquire
            retry_delay_max: Batas atas random retry delay (milliseconds)
            instance_timeout: Batas waktu reply per instance (milliseconds),
                harus jauh lebih kecil dari TTL lock
        """
        self._resource_name = resource_name
        self._lock_value = generate_lock_value()

        self._connections: List[Connection] = []
        # Connections yang dibuat sendiri dari host string, di-close oleh close()
        self._owned: List[Connection] = []

        for instance in instances:
            if isinstance(instance, Connection):
                self._connections.append(instance)
            else:
                connection = Connection.from_address(instance)
                self._connections.append(connection)
                self._owned.append(connection)

        self.retry_count = Config.REDLOCK_RETRY_COUNT if retry_count is None else retry_count
        self.retry_delay_max = Config.REDLOCK_RETRY_DELAY_MAX if retry_delay_max is None else retry_delay_max
        self.instance_timeout = Config.REDLOCK_INSTANCE_TIMEOUT if instance_timeout is None else instance_timeout

        self._random = random.Random()
        self._held = False

        # Statistics
        self.locks_acquired = 0
        self.locks_released = 0
        self.lock_failures = 0

    @property
    def resource_name(self) -> str:
        return self._resource_name

    @property
    def lock_value(self) -> str:
        return self._lock_value

    @property
    def quorum(self) -> int:
        return len(self._connections) // 2 + 1

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections)

    def is_held(self) -> bool:
        return self._held

    async def __aenter__(self) -> 'Redlock':
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._held:
            await self.unlock()
        await self.close()
        return False

    async def initialize(self):
        """
        Connect semua client yang belum connected.

        Hanya perlu jika Redlock dibuat dari hostnames atau connections
        yang diberikan belum connected.
        """
        pending = [c for c in self._connections if not c.is_connected()]
        await asyncio.gather(*(c.connect() for c in pending))

        connected = sum(1 for c in self._connections if c.is_connected())
        logger.info(f"Redlock '{self._resource_name}': {connected}/{len(self._connections)} instances connected")

    async def close(self):
        """Close connections yang dibuat oleh Redlock ini"""
        await asyncio.gather(*(c.close() for c in self._owned))

    async def lock(self, ttl: int) -> int:
        """
        Acquire distributed lock.

        Args:
            ttl: Lifetime lock dalam milliseconds

        Returns:
            Validity time dalam milliseconds, 0 jika gagal
        """
        attempts = max(1, self.retry_count)

        for attempt in range(1, attempts + 1):
            start_time = time.monotonic()

            # SET pada semua instance secara parallel
            acquired = await asyncio.gather(*(
                self._lock_instance(connection, ttl)
                for connection in self._connections
            ))
            successes = sum(1 for ok in acquired if ok)

            elapsed = int((time.monotonic() - start_time) * 1000)
            drift = ttl // CLOCK_DRIFT_DIV
            validity = ttl - elapsed - drift

            if successes >= self.quorum and validity > 0:
                self._held = True
                self.locks_acquired += 1
                metrics.record_lock_attempt(True)
                logger.info(f"Acquired lock '{self._resource_name}' on {successes}/{len(self._connections)} "
                            f"instances, valid for {validity}ms")
                return validity

            metrics.record_lock_attempt(False)
            logger.debug(f"Attempt {attempt}/{attempts} for '{self._resource_name}' failed "
                         f"({successes}/{len(self._connections)} instances, validity {validity}ms)")

            # Release partial locks sebelum retry
            await self._unlock_all()

            if attempt < attempts:
                await asyncio.sleep(self._get_random_delay() / 1000)

        self.lock_failures += 1
        logger.warning(f"Failed to acquire lock '{self._resource_name}' after {attempts} attempts")
        return 0

    async def unlock(self):
        """
        Release lock pada semua instance.

        Best-effort: error diabaikan, dan lock milik client lain tidak
        tersentuh karena value-nya berbeda.
        """
        await self._unlock_all()

        if self._held:
            self.locks_released += 1
            logger.info(f"Released lock '{self._resource_name}'")
        self._held = False

    async def _unlock_all(self):
        await asyncio.gather(*(
            self._unlock_instance(connection)
            for connection in self._connections
        ))

    async def _lock_instance(self, connection: Connection, ttl: int) -> bool:
        """Acquire lock pada satu instance (SET NX PX)"""
        result = await self._call(
            connection, 'SET', self._resource_name, self._lock_value, 'NX', 'PX', ttl
        )
        return result.type == ResultType.STRING and result.string == 'OK'

    async def _unlock_instance(self, connection: Connection):
        """Release lock pada satu instance, hasilnya tidak dicek"""
        result = await self._call(
            connection, 'EVAL', UNLOCK_SCRIPT, 1, self._resource_name, self._lock_value
        )
        if result.is_error():
            logger.debug(f"Unlock on {connection.address} failed: {result.string}")

    async def _call(self, connection: Connection, *args) -> Result:
        """
        Kirim satu command dengan batas waktu instance_timeout.

        Instance yang tidak reply tepat waktu di-close dan dihitung gagal;
        state connection-nya tidak bisa dipercaya lagi setelah read terputus.
        """
        timeout = self.instance_timeout / 1000 if self.instance_timeout else None

        try:
            return await asyncio.wait_for(connection.command(*args), timeout=timeout)
        except asyncio.TimeoutError:
            message = f"Timeout waiting for {connection.address}"
            logger.warning(f"Redlock '{self._resource_name}': {message}")
            await connection.close()
            return Result.io_error(message)

    def _get_random_delay(self) -> int:
        """Random delay dalam [1, retry_delay_max] milliseconds"""
        return self._random.randint(1, max(1, self.retry_delay_max))

    def get_stats(self) -> Dict[str, Any]:
        """Get lock statistics"""
        return {
            'resource_name': self._resource_name,
            'instances': len(self._connections),
            'quorum': self.quorum,
            'held': self._held,
            'locks_acquired': self.locks_acquired,
            'locks_released': self.locks_released,
            'lock_failures': self.lock_failures
        }

    def __repr__(self):
        return f"Redlock({self._resource_name}, instances={len(self._connections)}, held={self._held})"
