"""
Integration tests untuk Redlock distributed lock.
"""

import asyncio

import pytest
from resply.client import Connection
from resply.lock import Redlock, CLOCK_DRIFT_DIV, generate_lock_value
from resply.lock.redlock import to_base36

RESOURCE = 'resply-test-lock'


def make_lock(servers, **kwargs):
    kwargs.setdefault('retry_delay_max', 5)
    return Redlock(RESOURCE, [server.address for server in servers], **kwargs)


@pytest.mark.asyncio
async def test_mutual_exclusion(redis_servers):
    """Lock kedua gagal selama lock pertama masih dipegang"""
    async with make_lock(redis_servers) as lock1, make_lock(redis_servers, retry_count=2) as lock2:
        assert await lock1.lock(750) > 0
        assert lock1.is_held()

        assert await lock2.lock(500) == 0
        assert not lock2.is_held()

        await lock1.unlock()
        assert await lock2.lock(500) > 0


@pytest.mark.asyncio
async def test_validity_accounts_for_drift(redis_servers):
    ttl = 1000
    async with make_lock(redis_servers) as lock:
        validity = await lock.lock(ttl)

    assert 0 < validity <= ttl - ttl // CLOCK_DRIFT_DIV


@pytest.mark.asyncio
async def test_lock_sets_key_on_every_instance(redis_servers):
    async with make_lock(redis_servers) as lock:
        await lock.lock(1000)

        for server in redis_servers:
            assert server.get(RESOURCE) == lock.lock_value

    # __aexit__ melepas lock
    for server in redis_servers:
        assert server.get(RESOURCE) is None


@pytest.mark.asyncio
async def test_lock_expires_after_ttl(redis_servers):
    async with make_lock(redis_servers) as lock1, make_lock(redis_servers) as lock2:
        assert await lock1.lock(100) > 0
        await asyncio.sleep(0.15)

        assert await lock2.lock(1000) > 0


@pytest.mark.asyncio
async def test_unlock_does_not_touch_foreign_lock(redis_servers):
    """Unlock hanya menghapus key dengan value milik sendiri"""
    async with make_lock(redis_servers) as owner, make_lock(redis_servers, retry_count=1) as other:
        assert await owner.lock(1000) > 0

        await other.unlock()
        await other.unlock()

        for server in redis_servers:
            assert server.get(RESOURCE) == owner.lock_value


@pytest.mark.asyncio
async def test_unlock_is_idempotent(redis_servers):
    async with make_lock(redis_servers) as lock:
        await lock.lock(1000)
        await lock.unlock()
        await lock.unlock()

        assert not lock.is_held()
        assert lock.get_stats()['locks_released'] == 1


@pytest.mark.asyncio
async def test_quorum_with_unavailable_instances(redis_servers):
    """3 dari 5 instance cukup untuk quorum"""
    await redis_servers[0].stop()
    await redis_servers[1].stop()

    async with make_lock(redis_servers) as lock:
        assert lock.quorum == 3
        assert await lock.lock(1000) > 0


@pytest.mark.asyncio
async def test_no_quorum_fails(redis_servers):
    for server in redis_servers[:3]:
        await server.stop()

    async with make_lock(redis_servers, retry_count=1) as lock:
        assert await lock.lock(1000) == 0
        assert lock.get_stats()['lock_failures'] == 1


@pytest.mark.asyncio
async def test_unresponsive_instances_count_as_failed(redis_servers, silent_servers):
    """Instance yang hang tidak memblokir lock(), quorum tetap dari yang reply"""
    lock = make_lock(redis_servers + silent_servers, instance_timeout=50)
    await lock.initialize()

    validity = await asyncio.wait_for(lock.lock(1000), timeout=2)

    assert lock.quorum == 4
    assert validity > 0
    assert not lock.connections[5].is_connected()
    assert not lock.connections[6].is_connected()

    await asyncio.wait_for(lock.unlock(), timeout=2)
    await lock.close()


@pytest.mark.asyncio
async def test_unresponsive_majority_fails_without_hanging(redis_servers, silent_servers):
    lock = make_lock(redis_servers[:2] + silent_servers, retry_count=2, instance_timeout=50)
    await lock.initialize()

    assert await asyncio.wait_for(lock.lock(1000), timeout=2) == 0

    for server in redis_servers[:2]:
        assert server.get(RESOURCE) is None
    await lock.close()


@pytest.mark.asyncio
async def test_failed_attempt_releases_partial_locks(redis_servers):
    """Instance yang sempat ter-lock dibersihkan jika quorum tidak tercapai"""
    for server in redis_servers[:3]:
        server.store[RESOURCE] = ('someone-else', None)

    async with make_lock(redis_servers, retry_count=1) as lock:
        assert await lock.lock(1000) == 0

    for server in redis_servers[:3]:
        assert server.get(RESOURCE) == 'someone-else'
    for server in redis_servers[3:]:
        assert server.get(RESOURCE) is None


@pytest.mark.asyncio
async def test_retry_count_is_number_of_attempts(redis_servers):
    for server in redis_servers:
        server.store[RESOURCE] = ('someone-else', None)

    async with make_lock(redis_servers, retry_count=3) as lock:
        assert await lock.lock(1000) == 0

    for server in redis_servers:
        assert server.count_commands('SET') == 3


@pytest.mark.asyncio
async def test_zero_retry_count_still_attempts_once(redis_servers):
    async with make_lock(redis_servers, retry_count=0) as lock:
        assert await lock.lock(1000) > 0

    assert redis_servers[0].count_commands('SET') == 1


@pytest.mark.asyncio
async def test_accepts_connected_connections(redis_servers):
    """Connection yang diberikan caller tidak di-close oleh Redlock"""
    connections = [Connection(server.host, server.port) for server in redis_servers]
    for connection in connections:
        await connection.connect()

    async with Redlock(RESOURCE, connections) as lock:
        assert await lock.lock(1000) > 0

    assert all(connection.is_connected() for connection in connections)

    for connection in connections:
        await connection.close()


def test_lock_value_is_stable_per_instance():
    lock1 = Redlock(RESOURCE, ['localhost:6379'])
    lock2 = Redlock(RESOURCE, ['localhost:6379'])

    assert lock1.lock_value == lock1.lock_value
    assert lock1.lock_value != lock2.lock_value
    assert set(lock1.lock_value) <= set('0123456789abcdefghijklmnopqrstuvwxyz')


def test_generate_lock_value_is_unique():
    values = {generate_lock_value() for _ in range(100)}

    assert len(values) == 100


def test_to_base36():
    assert to_base36(0) == '0'
    assert to_base36(35) == 'z'
    assert to_base36(36) == '10'
    assert to_base36(1295) == 'zz'


def test_quorum_size():
    assert Redlock(RESOURCE, ['a:1']).quorum == 1
    assert Redlock(RESOURCE, ['a:1', 'b:1']).quorum == 2
    assert Redlock(RESOURCE, ['a:1', 'b:1', 'c:1']).quorum == 2
    assert Redlock(RESOURCE, ['a:1', 'b:1', 'c:1', 'd:1', 'e:1']).quorum == 3


if __name__ == "__main__":
    pytest.main([__file__, '-v'])
