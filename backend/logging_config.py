"""
Logging setup: one `portrait` logger tree, every record tagged with a session id.
"""
import os
import time
import logging
from contextlib import contextmanager
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOG_DIR = os.getenv('LOG_DIR', os.path.join(os.path.dirname(__file__), 'logs'))
LOG_LEVEL = os.getenv('LOG_LEVEL', 'DEBUG')
LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'true').lower() in ('1', 'true', 'yes')
LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-22s | %(session_id)-8s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

APP_NAME = 'portrait'
NO_SESSION = '-'


class SessionIdFilter(logging.Filter):
    def filter(self, record):
        record.session_id = getattr(record, 'session_id', NO_SESSION)
        return True


class SessionAdapter(logging.LoggerAdapter):
    """Tags every record with the owning generation session."""
    def process(self, msg, kwargs):
        kwargs.setdefault('extra', {})['session_id'] = self.extra['session_id']
        return msg, kwargs


def _attach(logger: logging.Logger, handler: logging.Handler, level: int):
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.addFilter(SessionIdFilter())
    logger.addHandler(handler)


def setup_logging(app_name: str = APP_NAME) -> logging.Logger:
    """
    Configure the application logger once; later calls return it unchanged.

    INFO and above go to the console. With LOG_TO_FILE on, DEBUG and above also
    go to LOG_DIR/<app_name>.log, rotated at midnight with a week kept.
    """
    logger = logging.getLogger(app_name)
    if getattr(logger, '_portrait_configured', False):
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.DEBUG))
    logger.handlers = []
    logger.propagate = False

    _attach(logger, logging.StreamHandler(), logging.INFO)
    if LOG_TO_FILE:
        Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
        rotating = TimedRotatingFileHandler(
            os.path.join(LOG_DIR, f'{app_name}.log'),
            when='midnight', backupCount=7, encoding='utf-8'
        )
        _attach(logger, rotating, logging.DEBUG)

    logger._portrait_configured = True
    logger.info(f"Logging ready (level={LOG_LEVEL}, file={LOG_DIR if LOG_TO_FILE else 'off'})")
    return logger


def get_logger(module_name: str) -> logging.Logger:
    return logging.getLogger(f'{APP_NAME}.{module_name}')


def get_session_logger(module_name: str, session_id: str) -> SessionAdapter:
    return SessionAdapter(get_logger(module_name), {'session_id': session_id})


@contextmanager
def log_timing(log, label: str):
    """Log how long the block took: DEBUG on success, WARNING (then re-raise) on failure."""
    start_time = time.time()
    try:
        yield
    except Exception:
        log.warning(f"{label} failed after {time.time() - start_time:.1f}s")
        raise
    log.debug(f"{label} finished in {time.time() - start_time:.1f}s")
