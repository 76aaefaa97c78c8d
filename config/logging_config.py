# logging_config.py

import os
import re
import sys
import logging
import logging.handlers
from pathlib import Path
from pythonjsonlogger import jsonlogger
from typing import Dict

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

PLAIN_FORMAT = '[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
JSON_FORMAT = '%(timestamp)s %(level)s %(name)s %(message)s'


class SensitiveDataFilter(logging.Filter):

    SENSITIVE_KEYS = [
        'password', 'token', 'api_key', 'apikey', 'secret', 'authorization',
        'bearer', 'key=', 'crux_api_key',
    ]

    PATTERNS = [
        (re.compile(r'(api[_-]?key\s*[=:]\s*)[^\s&"\']+', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'([?&]key=)[^\s&"\']+', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(token\s*[=:]\s*)[^\s&"\']+', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(password\s*[=:]\s*)[^\s&"\']+', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(Bearer\s+)[^\s]+', re.IGNORECASE), r'\1***MASKED***'),
        (re.compile(r'(AIza[0-9A-Za-z_\-]{35})'), r'AIza***MASKED***'),
    ]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            if self._looks_sensitive(msg):
                record.msg = self._mask_sensitive_data(msg)

        if hasattr(record, 'args') and record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._mask_if_sensitive(v) for k, v in record.args.items()}
            else:
                record.args = tuple(
                    self._mask_if_sensitive(arg) for arg in record.args
                )

        for attr in ('url', 'endpoint', 'error'):
            value = getattr(record, attr, None)
            if isinstance(value, str):
                setattr(record, attr, self._mask_sensitive_data(value))

        return True

    def _looks_sensitive(self, text):
        lowered = text.lower()
        return any(key in lowered for key in self.SENSITIVE_KEYS) or 'AIza' in text

    def _mask_sensitive_data(self, text):
        for pattern, replacement in self.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def _mask_if_sensitive(self, value):
        if isinstance(value, str):
            return self._mask_sensitive_data(value)
        return value


class CustomJsonFormatter(jsonlogger.JsonFormatter):

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)

        log_record['timestamp'] = self.formatTime(record, self.datefmt)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno

        if hasattr(record, 'service_name'):
            log_record['service'] = record.service_name

        if hasattr(record, 'request_id'):
            log_record['request_id'] = record.request_id

        if hasattr(record, 'metric'):
            log_record['metric'] = record.metric

        if hasattr(record, 'form_factor'):
            log_record['form_factor'] = record.form_factor

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


class MetricsLogger:

    _metrics = {
        'api_calls_success': 0,
        'api_calls_failed': 0,
        'field_data_reconciled': 0,
        'field_data_origin_fallback': 0,
        'field_data_unavailable': 0,
    }

    @classmethod
    def increment(cls, metric_name: str, value: int = 1):
        if metric_name in cls._metrics:
            cls._metrics[metric_name] += value

    @classmethod
    def get_metrics(cls) -> Dict[str, int]:
        return cls._metrics.copy()

    @classmethod
    def reset_metrics(cls):
        for key in cls._metrics:
            cls._metrics[key] = 0


def _build_formatter():
    if ENVIRONMENT == "production":
        return CustomJsonFormatter(JSON_FORMAT)
    return logging.Formatter(PLAIN_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')


def setup_logging(service_name="vitals_service"):

    logger = logging.getLogger()
    logger.setLevel(LOG_LEVEL)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    sensitive_filter = SensitiveDataFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(_build_formatter())
    console_handler.addFilter(sensitive_filter)
    logger.addHandler(console_handler)

    LOG_DIR.mkdir(exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        LOG_DIR / f"{service_name}.log",
        maxBytes=50 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    file_handler.setLevel(LOG_LEVEL)
    file_handler.setFormatter(_build_formatter())
    file_handler.addFilter(sensitive_filter)
    logger.addHandler(file_handler)

    error_handler = logging.handlers.RotatingFileHandler(
        LOG_DIR / f"{service_name}_error.log",
        maxBytes=50 * 1024 * 1024,
        backupCount=10,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(_build_formatter())
    error_handler.addFilter(sensitive_filter)
    logger.addHandler(error_handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return logger


def get_logger(name, service_name=None):
    logger = logging.getLogger(name)

    if service_name:
        logger = logging.LoggerAdapter(logger, {'service_name': service_name})

    return logger


def log_external_api_call(logger, service_name, endpoint, duration, status_code, error=None):
    extra = {
        'api_service': service_name,
        'endpoint': endpoint,
        'duration_ms': round(duration * 1000, 2),
        'status_code': status_code,
    }

    if error:
        logger.warning(
            f"External API call failed: {service_name} - {endpoint}",
            extra={**extra, 'error': str(error)},
        )
        MetricsLogger.increment('api_calls_failed')
    else:
        logger.info(
            f"External API call: {service_name} - {endpoint}",
            extra=extra
        )
        MetricsLogger.increment('api_calls_success')


class FieldDataLogger:

    def __init__(self):
        self.logger = get_logger('vitals_service.field_data', service_name='vitals')

    def log_fetch_started(self, url, form_factor):
        self.logger.info(
            f"Field data requested: {url} ({form_factor})",
            extra={'url': url, 'form_factor': form_factor}
        )

    def log_origin_fallback(self, url, origin, form_factor):
        self.logger.info(
            f"No page-level field data for {url}, using origin {origin}",
            extra={'url': url, 'origin': origin, 'form_factor': form_factor}
        )
        MetricsLogger.increment('field_data_origin_fallback')

    def log_unavailable(self, url, form_factor, reason):
        self.logger.info(
            f"Field data unavailable for {url}: {reason}",
            extra={'url': url, 'form_factor': form_factor, 'reason': reason}
        )
        MetricsLogger.increment('field_data_unavailable')

    def log_reconciled(self, url, scope, metric_ids):
        self.logger.info(
            f"Field data reconciled for {url} ({scope})",
            extra={'url': url, 'scope': scope, 'metrics': list(metric_ids)}
        )
        MetricsLogger.increment('field_data_reconciled')

    def log_distribution_rejected(self, metric_id, error):
        self.logger.warning(
            f"Rejected {metric_id} field distribution: {error}",
            extra={'metric': metric_id, 'error': str(error)}
        )
