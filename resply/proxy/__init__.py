"""Proxy package initialization"""

from .http_adapter import ProxyServer

__all__ = ['ProxyServer']
