#!/usr/bin/env python3
"""Tests for the tailcat command line entry point."""

import io
import os
import shutil
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import tailcat
from modules.logstream.models import LogRecord, TraceLevel


REPLAY_LINES = [
    '--------- beginning of main',
    '02-07 17:45:33.014 I/ActivityManager( 512): Start proc com.example',
    '02-07 17:45:33.020 D/dalvikvm( 900): GC_CONCURRENT freed 2K',
    '02-07 17:45:33.031 E/AndroidRuntime( 900): FATAL EXCEPTION: main',
]


class TailPrinterTests(unittest.TestCase):
    def _records(self, *names):
        return [LogRecord(TraceLevel.INFO, name) for name in names]

    def test_prints_only_new_records(self):
        output = io.StringIO()
        printer = tailcat.TailPrinter(output)
        printer(self._records('a', 'b'), 0)
        printer(self._records('a', 'b', 'c'), 0)
        self.assertEqual(output.getvalue(), 'I a\nI b\nI c\n')

    def test_accounts_for_evicted_records(self):
        output = io.StringIO()
        printer = tailcat.TailPrinter(output)
        printer(self._records('a', 'b', 'c'), 0)
        printer(self._records('c', 'd', 'e'), 2)
        self.assertEqual(output.getvalue().splitlines()[-2:], ['I d', 'I e'])

    def test_clear_signal_resets(self):
        output = io.StringIO()
        printer = tailcat.TailPrinter(output)
        printer(self._records('a', 'b'), 0)
        printer([], 0)
        printer(self._records('x'), 0)
        self.assertEqual(output.getvalue(), 'I a\nI b\nI x\n')

    def test_filtered_redelivery_does_not_reprint(self):
        output = io.StringIO()
        printer = tailcat.TailPrinter(output)
        printer(self._records('a', 'b', 'c'), 0)
        printer(self._records('b'), 0)
        printer(self._records('a', 'b', 'c', 'd'), 0)
        self.assertEqual(output.getvalue(), 'I a\nI b\nI c\nI d\n')

    def test_trimmed_redelivery_then_evicting_batch(self):
        output = io.StringIO()
        printer = tailcat.TailPrinter(output)
        printer(self._records('a', 'b', 'c'), 0)
        printer(self._records('c'), 0)
        printer(self._records('d'), 1)
        self.assertEqual(output.getvalue(), 'I a\nI b\nI c\nI d\n')


class TailcatMainTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = str(Path(self.temp_dir) / 'tailcat.json')
        self.replay_path = Path(self.temp_dir) / 'capture.txt'
        self.replay_path.write_text('\n'.join(REPLAY_LINES) + '\n', encoding='utf-8')

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _run(self, *extra):
        output = io.StringIO()
        argv = ['--config', self.config_path, '--replay', str(self.replay_path), *extra]
        with redirect_stdout(output):
            code = tailcat.main(argv)
        return code, output.getvalue().splitlines()

    def test_replay_prints_every_record(self):
        code, lines = self._run('--interval', '0')
        self.assertEqual(code, 0)
        self.assertEqual(lines, [
            'I 02-07 17:45:33.014 ActivityManager( 512): Start proc com.example',
            'D 02-07 17:45:33.020 dalvikvm( 900): GC_CONCURRENT freed 2K',
            'E 02-07 17:45:33.031 AndroidRuntime( 900): FATAL EXCEPTION: main',
        ])

    def test_replay_with_filter_and_level(self):
        code, lines = self._run('--filter', 'fatal|proc', '--level', 'W')
        self.assertEqual(code, 0)
        self.assertEqual(lines, ['E 02-07 17:45:33.031 AndroidRuntime( 900): FATAL EXCEPTION: main'])

    def test_rejects_invalid_capacity(self):
        stderr = io.StringIO()
        sys_stderr = sys.stderr
        sys.stderr = stderr
        try:
            code, _ = self._run('--max-retained', '0')
        finally:
            sys.stderr = sys_stderr
        self.assertEqual(code, 2)
        self.assertIn('tailcat', stderr.getvalue())

    def test_parser_level_choices(self):
        args = tailcat.build_parser().parse_args(['--level', 'F', '--serial', 'abc'])
        self.assertEqual(args.level, 'F')
        self.assertEqual(args.serial, 'abc')
        self.assertFalse(args.gui)


if __name__ == '__main__':
    unittest.main()
