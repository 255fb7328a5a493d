"""
Configuration manager untuk resply.
File ini membaca environment variables dan menyediakan
konfigurasi default untuk connection, Redlock, dan HTTP adapter.
"""

import os
from typing import List, Tuple
from dotenv import load_dotenv

# Load environment variables dari .env file
load_dotenv()

DEFAULT_PORT = 6379


def parse_address(address: str, default_port: int = DEFAULT_PORT) -> Tuple[str, int]:
    """
    Split server address ke host dan port.

    Args:
        address: Format "host[:port]"
        default_port: Port yang dipakai jika ":port" tidak ada

    Returns:
        Tuple (host, port)

    Raises:
        ValueError: jika port bukan angka
    """
    host, sep, port = address.strip().partition(':')
    if not host:
        host = 'localhost'
    if not sep or not port:
        return host, default_port
    if not port.isdigit():
        raise ValueError(f"Invalid port in address: {address!r}")
    return host, int(port)


class Config:
    """Class untuk manage semua konfigurasi client"""

    # Redis server default
    REDIS_HOST: str = os.getenv('REDIS_HOST', 'localhost')
    REDIS_PORT: int = int(os.getenv('REDIS_PORT', DEFAULT_PORT))

    # Connection (timeout dalam milliseconds)
    CONNECT_TIMEOUT: int = int(os.getenv('CONNECT_TIMEOUT', 500))
    READ_CHUNK_SIZE: int = int(os.getenv('READ_CHUNK_SIZE', 4096))
    # 0 = tunggu reply tanpa batas
    COMMAND_TIMEOUT: int = int(os.getenv('COMMAND_TIMEOUT', 0))

    # Redlock Configuration (delay dan timeout dalam milliseconds)
    REDLOCK_RETRY_COUNT: int = int(os.getenv('REDLOCK_RETRY_COUNT', 3))
    REDLOCK_RETRY_DELAY_MAX: int = int(os.getenv('REDLOCK_RETRY_DELAY_MAX', 200))
    REDLOCK_INSTANCE_TIMEOUT: int = int(os.getenv('REDLOCK_INSTANCE_TIMEOUT', 100))

    @staticmethod
    def get_redlock_hosts() -> List[str]:
        """
        Parse Redlock instances dari environment variable.
        Format: "host1:port1,host2:port2"
        Returns: List of server addresses
        """
        hosts_str = os.getenv('REDLOCK_HOSTS', '')
        if not hosts_str:
            return []
        return [host.strip() for host in hosts_str.split(',') if host.strip()]

    # HTTP adapter
    PROXY_HOST: str = os.getenv('PROXY_HOST', 'localhost')
    PROXY_PORT: int = int(os.getenv('PROXY_PORT', 8080))

    # Logging
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE: str = os.getenv('LOG_FILE', '')

    @classmethod
    def display(cls):
        """Print semua konfigurasi untuk debugging"""
        print("=== Configuration ===")
        print(f"Redis: {cls.REDIS_HOST}:{cls.REDIS_PORT}")
        print(f"Connect timeout: {cls.CONNECT_TIMEOUT}ms, command timeout: {cls.COMMAND_TIMEOUT}ms")
        print(f"Redlock hosts: {cls.get_redlock_hosts()}")
        print(f"Redlock retries: {cls.REDLOCK_RETRY_COUNT} (max delay {cls.REDLOCK_RETRY_DELAY_MAX}ms)")
        print(f"Proxy: {cls.PROXY_HOST}:{cls.PROXY_PORT}")
        print("=" * 30)


# Test configuration saat file dijalankan langsung
if __name__ == "__main__":
    Config.display()
