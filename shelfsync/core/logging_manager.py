"""
Logging Manager for ShelfSync
Console and rotating-file logging with credential scrubbing and optional JSON output
"""

import json
import logging
import logging.handlers
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

SENSITIVE_FIELDS = (
    'password', 'secret', 'token', 'authorization', 'api_key', 'private_key', 'cookie'
)

_BEARER_PATTERN = re.compile(r'(Bearer\s+)[A-Za-z0-9\-._~+/]+=*', re.IGNORECASE)


class SecuritySafeFormatter(logging.Formatter):
    """Formatter that masks credentials and tokens in log messages"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sensitive_fields = SENSITIVE_FIELDS
        self._field_patterns = [
            (field, re.compile(rf'{field}["\']?\s*[:=]\s*["\']?([^"\'\s,}}]+)', re.IGNORECASE))
            for field in self.sensitive_fields
        ]

    def format(self, record):
        # Render once, then drop args so the sanitized text is not re-interpolated
        record.msg = self._sanitize_message(record.getMessage())
        record.args = None
        return super().format(record)

    def _sanitize_message(self, message: str) -> str:
        lowered = message.lower()
        for field, pattern in self._field_patterns:
            if field in lowered:
                message = pattern.sub(f'{field}=***', message)
        return _BEARER_PATTERN.sub(r'\1***', message)


class JSONFormatter(SecuritySafeFormatter):
    """One JSON object per line"""

    def format(self, record):
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'component': record.name,
            'message': self._sanitize_message(record.getMessage()),
            'metadata': {
                'filename': record.filename,
                'lineno': record.lineno,
                'funcName': record.funcName
            }
        }

        if record.exc_info:
            log_data['stack_trace'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class LoggingManager:
    """Installs root handlers from the ``logging`` config section"""

    TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    def __init__(self):
        self.configured = False
        self.handlers: List[logging.Handler] = []

    def configure(self, config: Dict[str, Any]):
        if self.configured:
            return

        settings = config.get('logging', {})
        level = getattr(logging, str(settings.get('level', 'INFO')).upper(), logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        formatter_factory = JSONFormatter if settings.get('json_format') else (
            lambda: SecuritySafeFormatter(self.TEXT_FORMAT)
        )

        if settings.get('console_enabled', True):
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter_factory())
            root_logger.addHandler(console_handler)
            self.handlers.append(console_handler)

        if settings.get('file_enabled'):
            log_path = Path(settings.get('file_path', 'logs/shelfsync.log'))
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(log_path),
                maxBytes=int(settings.get('file_max_size', 10 * 1024 * 1024)),
                backupCount=int(settings.get('file_backup_count', 5)),
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter())
            root_logger.addHandler(file_handler)
            self.handlers.append(file_handler)

        # httpx logs every request at INFO
        logging.getLogger('httpx').setLevel(max(level, logging.WARNING))

        self.configured = True
        logging.getLogger(__name__).info("Logging system configured successfully")

    def shutdown(self):
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()

        self.handlers.clear()
        self.configured = False


logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]):
    logging_manager.configure(config)
