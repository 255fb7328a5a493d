"""
Utils package initialization.
Import semua utilities di sini agar mudah diakses.
"""

from .config import Config, parse_address
from .metrics import metrics, measure_time

__all__ = ['Config', 'parse_address', 'metrics', 'measure_time']
