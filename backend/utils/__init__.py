from .clock import utcnow
from .logging_utils import setup_logging, get_logger, LogTimer

__all__ = ['utcnow', 'setup_logging', 'get_logger', 'LogTimer']
