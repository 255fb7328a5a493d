"""Lock package initialization"""

from .redlock import Redlock, UNLOCK_SCRIPT, CLOCK_DRIFT_DIV, generate_lock_value

__all__ = ['Redlock', 'UNLOCK_SCRIPT', 'CLOCK_DRIFT_DIV', 'generate_lock_value']
