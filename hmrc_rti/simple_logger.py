"""
Simple Logger for the HMRC RTI core
A lightweight logging module without circular dependencies
"""

import os
import sys
import logging
import logging.handlers
from pathlib import Path


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler that safely handles Unicode encoding errors"""

    def __init__(self, stream=None):
        if stream is None:
            stream = sys.stderr
        super().__init__(stream)

    def emit(self, record):
        """Emit a record, handling Unicode encoding errors gracefully"""
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                safe_msg = msg.encode('ascii', errors='replace').decode('ascii')
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


class SafeFormatter(logging.Formatter):
    """Formatter that safely handles Unicode encoding errors"""

    def format(self, record):
        try:
            return super().format(record)
        except UnicodeEncodeError:
            msg = record.getMessage()
            record.msg = msg.encode('utf-8', errors='replace').decode('utf-8')
            record.args = ()
            return super().format(record)


LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-28s | %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class SimpleLogger:
    """Simple logger for the RTI core"""

    def __init__(self, log_dir=None):
        self.loggers = {}
        self.handlers = {}
        self.log_dir = Path(log_dir or os.environ.get('LOG_DIR') or Path(__file__).parent.parent / 'logs')
        self._setup_logging()

    def _setup_logging(self):
        """Attach console and file handlers to the package logger"""
        package_logger = logging.getLogger('hmrc_rti')
        package_logger.setLevel(logging.DEBUG)

        console_handler = SafeStreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(SafeFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        self.handlers['console'] = console_handler

        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._setup_file_handlers()
        except OSError as e:
            # Read-only filesystems still get console output
            console_handler.setLevel(logging.INFO)
            sys.stderr.write(f"Warning: file logging disabled ({e})\n")

    def _setup_file_handlers(self):
        """Setup rotating file handlers"""
        formatter = SafeFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

        app_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'rti_app.log', maxBytes=10*1024*1024, backupCount=5, encoding='utf-8'
        )
        app_handler.setLevel(logging.DEBUG)
        app_handler.setFormatter(formatter)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / 'rti_errors.log', maxBytes=5*1024*1024, backupCount=3, encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)

        self.handlers['app'] = app_handler
        self.handlers['error'] = error_handler

    def get_logger(self, name: str) -> logging.Logger:
        """Get a logger by name"""
        if name not in self.loggers:
            logger = logging.getLogger(f'hmrc_rti.{name}')
            for handler in self.handlers.values():
                logger.addHandler(handler)
            logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())
            self.loggers[name] = logger

        return self.loggers[name]


# Global logger instance
_simple_logger = None


def get_simple_logger():
    """Get the global simple logger instance"""
    global _simple_logger
    if _simple_logger is None:
        _simple_logger = SimpleLogger()
    return _simple_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    return get_simple_logger().get_logger(name)
