"""Tests for structured log formatting and account context."""

import gzip
import json
import logging
import sys

from rebalance_service.context import clear_current_account, get_current_account, set_current_account
from rebalance_service.logger import AccountContextFilter, CompressingTimedRotatingFileHandler, StructuredFormatter


def make_record(message='Plan ready', **extra):
    record = logging.LogRecord('rebalance_service.rebalancer', logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:

    def test_json_format(self):
        output = json.loads(StructuredFormatter('json').format(make_record(account_id='paper', orders=3)))

        assert output['message'] == 'Plan ready'
        assert output['level'] == 'INFO'
        assert output['account_id'] == 'paper'
        assert output['orders'] == 3

    def test_text_format_appends_account(self):
        line = StructuredFormatter('text').format(make_record(account_id='paper'))

        assert 'INFO - Plan ready' in line
        assert line.endswith('[account_id=paper]')

    def test_exception_included(self):
        try:
            raise RuntimeError('broker down')
        except RuntimeError:
            record = logging.LogRecord('x', logging.ERROR, __file__, 1, 'failed', None, sys.exc_info())

        line = StructuredFormatter('text').format(record)

        assert 'RuntimeError: broker down' in line


class TestAccountContext:

    def test_filter_uses_current_account(self):
        set_current_account('paper')
        try:
            record = make_record()
            AccountContextFilter().filter(record)
            assert record.account_id == 'paper'
        finally:
            clear_current_account()

        assert get_current_account() is None

    def test_filter_without_account(self):
        record = make_record()

        assert AccountContextFilter().filter(record)
        assert not hasattr(record, 'account_id')


class TestRotation:

    def test_rotated_file_is_gzipped(self, tmp_path):
        handler = CompressingTimedRotatingFileHandler(filename=str(tmp_path / 'rebalancer.log'), when='midnight')
        rotated = tmp_path / 'rebalancer.log.old'
        rotated.write_text('Plan ready\n')
        try:
            dest = handler.rotation_filename(str(tmp_path / 'rebalancer.log.2026-03-01'))
            handler.rotate(str(rotated), dest)
        finally:
            handler.close()

        assert dest.endswith('.gz')
        with gzip.open(dest, 'rt') as f:
            assert f.read() == 'Plan ready\n'
        assert not rotated.exists()
