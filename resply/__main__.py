"""
Main entry point untuk resply.

Cara menjalankan:
  python -m resply cli --host localhost -p 6379
  python -m resply proxy --host localhost -p 6379 --listen-port 8080
"""

import asyncio
import argparse
import logging
import shlex
import sys

from . import __version__
from .client import Connection
from .proxy import ProxyServer
from .utils.config import Config


def setup_logging():
    """Setup logging configuration"""
    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(Config.LOG_FILE) if Config.LOG_FILE else logging.NullHandler()
        ]
    )


async def run_cli(host: str, port: int):
    """
    Interactive REPL: setiap line dikirim sebagai satu command.

    Args:
        host: Redis server address
        port: Redis server port
    """
    connection = Connection(host, port)
    if not await connection.connect():
        print(f"Could not connect to {host}:{port}: {connection.last_error}")
        return

    loop = asyncio.get_running_loop()
    prompt = f"{host}:{port}> "

    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input, prompt)
            except EOFError:
                break

            try:
                command = shlex.split(line)
            except ValueError as e:
                print(f"(error) {e}")
                continue

            if not command:
                continue

            result = await connection.command(*command)
            print(result)
    finally:
        await connection.close()
        print()


async def run_proxy(host: str, port: int, listen_host: str, listen_port: int):
    """Run HTTP adapter sampai di-interrupt"""
    proxy = ProxyServer(listen_host, listen_port, Connection(host, port))
    await proxy.start()

    print(f"\n{'='*60}")
    print("  RESPLY PROXY STARTED")
    print(f"  Address: http://{listen_host}:{listen_port}")
    print(f"  Upstream: {host}:{port}")
    print(f"{'='*60}\n")

    try:
        # Keep running
        while True:
            await asyncio.sleep(1)
    finally:
        await proxy.stop()


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(prog='resply', description='asyncio Redis client')
    parser.add_argument(
        'mode',
        nargs='?',
        choices=['cli', 'proxy'],
        default='cli',
        help='Run the interactive client or the HTTP adapter'
    )
    parser.add_argument(
        '--host',
        default=Config.REDIS_HOST,
        help=f"Set the host to connect to [default: {Config.REDIS_HOST}]"
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        default=Config.REDIS_PORT,
        help=f"Set the port to connect to [default: {Config.REDIS_PORT}]"
    )
    parser.add_argument('--listen-host', default=Config.PROXY_HOST, help='Proxy bind address')
    parser.add_argument('--listen-port', type=int, default=Config.PROXY_PORT, help='Proxy bind port')
    parser.add_argument('--version', action='store_true', help='Show version and exit.')

    args = parser.parse_args()

    if args.version:
        print(f"{parser.prog}\nUsing resply version {__version__}")
        return

    # Setup logging
    setup_logging()

    try:
        if args.mode == 'proxy':
            asyncio.run(run_proxy(args.host, args.port, args.listen_host, args.listen_port))
        else:
            asyncio.run(run_cli(args.host, args.port))
    except KeyboardInterrupt:
        print("\nExiting...")


if __name__ == "__main__":
    main()
