"""
HTTP adapter untuk resply.
Re-expose satu upstream Connection lewat HTTP/JSON (aiohttp),
dan pub/sub lewat WebSocket.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from aiohttp import web, WSMsgType

from ..client import Connection
from ..protocol import command_name
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)


def _parse_command(raw: Any) -> List[Any]:
    """Validasi satu command dari JSON body"""
    if not isinstance(raw, list) or not raw:
        raise ValueError("command must be a non-empty list")
    for arg in raw:
        if isinstance(arg, bool) or not isinstance(arg, (str, int)):
            raise ValueError(f"unsupported argument: {arg!r}")
    return raw


def _reject_subscribe(command: List[Any]):
    """Pub/sub commands akan membuat upstream masuk subscribed mode"""
    name = command_name(command)
    if 'subscribe' in name:
        raise ValueError(f"{name.upper()} is only available via /api/subscribe")


class ProxyServer:
    """
    HTTP server yang meneruskan command ke Redis.

    Endpoints:
    - POST /api/command    {"command": ["set", "a", "1"]}
    - POST /api/pipeline   {"commands": [["incr", "a"], ["incr", "a"]]}
    - GET  /api/subscribe  WebSocket, ?channel=a atau ?pattern=news.*
    - GET  /api/status, /api/metrics, /health
    """

    def __init__(self, host: str, port: int, upstream: Connection):
        """
        Args:
            host: Bind address
            port: Bind port
            upstream: Connection ke Redis server
        """
        self.host = host
        self.port = port
        self.upstream = upstream

        # Satu exchange per waktu pada upstream connection
        self._lock = asyncio.Lock()

        self.app = web.Application()
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self._setup_routes()

        # Statistics
        self.requests_handled = 0
        self.active_subscribers = 0

    def _setup_routes(self):
        """Setup HTTP API routes"""
        self.app.router.add_post('/api/command', self.handle_command)
        self.app.router.add_post('/api/pipeline', self.handle_pipeline)
        self.app.router.add_get('/api/subscribe', self.handle_subscribe)
        self.app.router.add_get('/api/status', self.handle_status)
        self.app.router.add_get('/api/metrics', self.handle_metrics)
        self.app.router.add_get('/health', self.handle_health)

    async def start(self):
        """Connect upstream dan start HTTP server"""
        if not await self.upstream.connect():
            logger.warning(f"Upstream {self.upstream.address} not reachable, starting anyway")

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Proxy started at http://{self.host}:{self.port} -> {self.upstream.address}")

    async def stop(self):
        """Stop HTTP server dan close upstream"""
        if self.site:
            await self.site.stop()
        if self.runner:
            await self.runner.cleanup()

        await self.upstream.close()
        logger.info("Proxy stopped")

    async def _ensure_upstream(self) -> bool:
        if self.upstream.is_connected():
            return True
        return await self.upstream.connect()

    async def handle_command(self, request: web.Request) -> web.Response:
        """Execute satu command"""
        try:
            data = await request.json()
            command = _parse_command(data['command'])
            _reject_subscribe(command)
        except (ValueError, KeyError, TypeError) as e:
            return web.json_response({'error': f"bad request: {e}"}, status=400)

        async with self._lock:
            await self._ensure_upstream()
            result = await self.upstream.command(*command)

        self.requests_handled += 1
        return web.json_response({'result': result.to_dict()})

    async def handle_pipeline(self, request: web.Request) -> web.Response:
        """Execute batch command dalam satu pipeline"""
        try:
            data = await request.json()
            commands = [_parse_command(raw) for raw in data['commands']]
            pipeline = self.upstream.pipelined()
            for command in commands:
                pipeline.command(*command)
        except (ValueError, KeyError, TypeError) as e:
            return web.json_response({'error': f"bad request: {e}"}, status=400)

        async with self._lock:
            await self._ensure_upstream()
            results = await pipeline.send()

        self.requests_handled += 1
        return web.json_response({'results': [r.to_dict() for r in results]})

    async def handle_subscribe(self, request: web.Request) -> web.StreamResponse:
        """
        WebSocket endpoint untuk pub/sub.
        Setiap subscriber mendapat Connection sendiri ke upstream.
        """
        channel = request.query.get('channel')
        pattern = request.query.get('pattern')
        if not channel and not pattern:
            return web.json_response({'error': 'channel or pattern required'}, status=400)

        ws = web.WebSocketResponse()
        await ws.prepare(request)

        subscriber = Connection(self.upstream.host, self.upstream.port, self.upstream.timeout)
        if not await subscriber.connect():
            await ws.close(message=b'upstream unavailable')
            return ws

        async def forward(channel_name: str, message: str):
            try:
                await ws.send_json({'channel': channel_name, 'message': message})
            except ConnectionResetError:
                logger.debug(f"WebSocket closed, dropping message on {channel_name}")

        if channel:
            await subscriber.subscribe(channel, forward)
        if pattern:
            await subscriber.psubscribe(pattern, forward)

        subscriber.start_listening(forward)
        self.active_subscribers += 1
        logger.info(f"WebSocket subscriber attached (channel={channel}, pattern={pattern})")

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    logger.warning(f"WebSocket error: {ws.exception()}")
                    break
        finally:
            self.active_subscribers -= 1
            await subscriber.stop_listening()
            await subscriber.close()

        return ws

    async def handle_status(self, request: web.Request) -> web.Response:
        """Get proxy status"""
        status: Dict[str, Any] = {
            'address': f"{self.host}:{self.port}",
            'upstream': self.upstream.get_stats(),
            'requests_handled': self.requests_handled,
            'active_subscribers': self.active_subscribers
        }
        return web.json_response(status)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Export Prometheus metrics"""
        metrics_data = metrics.get_metrics()
        return web.Response(body=metrics_data, content_type='text/plain')

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint"""
        if self.upstream.is_connected():
            return web.json_response({'status': 'healthy'})
        else:
            return web.json_response({'status': 'unhealthy'}, status=503)
