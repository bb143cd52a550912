"""Root logger setup: text or JSON records tagged with the account being balanced"""

import gzip
import json
import logging
import os
import shutil
import sys
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Dict, Optional
from app_config import ServiceConfig
from .context import get_current_account

_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'account_id'}
_QUIET_LOGGERS = ('aiohttp', 'aiohttp.access', 'apscheduler')


class CompressingTimedRotatingFileHandler(TimedRotatingFileHandler):
    """Rotates at the configured interval and gzips each rotated file"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.namer = lambda name: f"{name}.gz"
        self.rotator = self._compress

    @staticmethod
    def _compress(source: str, dest: str) -> None:
        try:
            with open(source, 'rb') as f_in, gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
            os.remove(source)
        except OSError as e:
            # Keep logging to the live file even if the archive cannot be written
            print(f"Log rotation failed for {source}: {e}", file=sys.stderr)


class AccountContextFilter(logging.Filter):
    """Attach the account being balanced to every record"""

    def filter(self, record):
        if not hasattr(record, 'account_id'):
            account_id = get_current_account()
            if account_id is not None:
                record.account_id = account_id
        return True


class StructuredFormatter(logging.Formatter):
    """One line per record: `ts - logger - LEVEL - msg [account_id=..]` or a JSON object"""

    def __init__(self, fmt_type: str = 'text'):
        super().__init__()
        self.fmt_type = fmt_type

    def _fields(self, record: logging.LogRecord) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if hasattr(record, 'account_id'):
            fields['account_id'] = record.account_id

        # Values passed through `extra=`
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            fields[key] = value.strftime('%Y-%m-%d %H:%M:%S') if isinstance(value, datetime) else value

        if record.exc_info:
            fields['exception'] = self.formatException(record.exc_info)
        return fields

    def format(self, record):
        fields = self._fields(record)
        if self.fmt_type == 'json':
            return json.dumps(fields, default=str)

        line = f"{fields['timestamp']} - {fields['logger']} - {fields['level']} - {fields['message']}"
        if 'account_id' in fields:
            line += f" [account_id={fields['account_id']}]"
        if 'exception' in fields:
            line += f"\n{fields['exception']}"
        return line


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter,
            context_filter: logging.Filter) -> None:
    handler.setFormatter(formatter)
    handler.addFilter(context_filter)
    root.addHandler(handler)


def configure_root_logger(service_config: Optional[ServiceConfig] = None,
                          log_file_name: str = 'rebalancer.log') -> None:
    """Route all loggers through StructuredFormatter on stdout and, if log_dir is set, a daily file"""
    service_config = service_config or ServiceConfig()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, service_config.log_level.upper(), logging.INFO))

    formatter = StructuredFormatter(service_config.log_format)
    context_filter = AccountContextFilter()
    _attach(root, logging.StreamHandler(sys.stdout), formatter, context_filter)

    if service_config.log_dir:
        os.makedirs(service_config.log_dir, exist_ok=True)
        file_handler = CompressingTimedRotatingFileHandler(
            filename=os.path.join(service_config.log_dir, log_file_name),
            when='midnight',
            backupCount=365,
            encoding='utf-8',
        )
        _attach(root, file_handler, formatter, context_filter)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
