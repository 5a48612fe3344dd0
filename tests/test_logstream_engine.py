#!/usr/bin/env python3
"""Unit tests for modules.logstream.engine.StreamEngine."""

import itertools
import os
import sys
import threading
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from modules.logstream.dispatch import ImmediateDispatcher, QueueDispatcher
from modules.logstream.engine import StreamEngine
from modules.logstream.errors import InvalidConfigurationError
from modules.logstream.models import EngineState, LogRecord, StreamConfig, TraceLevel
from modules.logstream.parser import RecordParser
from modules.logstream.sources import IterableLogSource, LogSource


def _line(message, code='D'):
    return f'02-07 17:45:33.014 {code}/{message}'


def _message(message):
    return f'02-07 17:45:33.014 {message}'


class FakeLogSource:
    """Synchronous stand-in for a reader thread."""

    def __init__(self, index):
        self.index = index
        self.trace_id = f'fake-{index}'
        self._listener = None
        self.started = False
        self.stopped = False

    def set_listener(self, listener):
        self._listener = listener

    @property
    def listener(self):
        return self._listener

    def is_started(self):
        return self.started

    def is_alive(self):
        return self.started and not self.stopped

    def start(self):
        if self.started:
            raise RuntimeError('already started')
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        return True

    def emit(self, *lines):
        for line in lines:
            self._listener(line)


class FakeSourceFactory:
    def __init__(self):
        self.created = []

    def __call__(self):
        source = FakeLogSource(len(self.created))
        self.created.append(source)
        return source

    @property
    def current(self):
        return self.created[-1]


class ScriptedClock:
    """Returns the scripted values in order, then keeps repeating the last one."""

    def __init__(self, *values):
        self._values = list(values)
        self.calls = 0

    def __call__(self):
        index = min(self.calls, len(self._values) - 1)
        self.calls += 1
        return self._values[index]


class BlockingParser(RecordParser):
    """Holds one chosen line inside ``parse`` until released."""

    def __init__(self, blocked_line):
        self.blocked_line = blocked_line
        self.entered = threading.Event()
        self.release = threading.Event()

    def parse(self, line):
        if line == self.blocked_line:
            self.entered.set()
            self.release.wait(5.0)
        return super().parse(line)


class LingeringSource(LogSource):
    """Reader that ignores stop requests and emits one line once the gate opens."""

    def __init__(self, line):
        super().__init__('lingering-source')
        self.line = line
        self.gate = threading.Event()

    def stop(self):
        pass

    def _read_lines(self):
        self.gate.wait(5.0)
        yield self.line


class StreamEngineTests(unittest.TestCase):
    def setUp(self):
        self.factory = FakeSourceFactory()
        self.batches = []

    def _engine(self, clock=None, **config):
        engine = StreamEngine(
            self.factory,
            ImmediateDispatcher(),
            clock=clock or ScriptedClock(0),
            config=StreamConfig(**config),
        )
        engine.register_subscriber(self.batches.append)
        return engine

    def test_created_idle_and_start_attaches_listener(self):
        engine = self._engine()
        self.assertIs(engine.state, EngineState.IDLE)
        engine.start()
        self.assertTrue(engine.is_running())
        self.assertTrue(self.factory.current.started)
        self.assertIsNotNone(self.factory.current.listener)

    def test_start_twice_is_noop(self):
        engine = self._engine()
        engine.start()
        engine.start()
        self.assertEqual(len(self.factory.created), 1)

    def test_stop_when_idle_is_noop(self):
        engine = self._engine()
        engine.stop()
        self.assertFalse(self.factory.current.stopped)
        self.assertIs(engine.state, EngineState.IDLE)

    def test_start_after_stop_uses_new_source(self):
        engine = self._engine()
        engine.start()
        first = self.factory.current
        engine.stop()
        self.assertTrue(first.stopped)
        self.assertIs(engine.state, EngineState.IDLE)
        engine.start()
        self.assertEqual(len(self.factory.created), 2)
        self.assertIsNot(engine.source, first)
        self.assertTrue(engine.source.started)

    def test_first_matching_line_flushes_immediately(self):
        engine = self._engine()
        engine.start()
        self.factory.current.emit(_line('hello'))
        self.assertEqual(self.batches, [[LogRecord(TraceLevel.DEBUG, _message('hello'))]])

    def test_debounces_within_interval(self):
        now = [0]
        engine = self._engine(clock=lambda: now[0], flush_interval_ms=10)
        engine.start()
        source = self.factory.current

        for tick in (0, 5, 15, 20):
            now[0] = tick
            source.emit(_line(f't{tick:02d}'))

        # t05 waits for t15 (15 - 0 > 10); t20 is within 10ms of that flush.
        self.assertEqual(
            [[record.message for record in batch] for batch in self.batches],
            [[_message('t00')], [_message('t05'), _message('t15')]],
        )
        self.assertEqual(engine.pending_count(), 1)

        now[0] = 40
        source.emit(_line('t40'))
        self.assertEqual(
            [record.message for record in self.batches[-1]],
            [_message('t20'), _message('t40')],
        )

    def test_filtered_lines_do_not_flush(self):
        clock = ScriptedClock(0)
        engine = self._engine(clock=clock, text_filter='keep')
        engine.start()
        self.factory.current.emit(_line('drop me'), _line('also dropped'))
        self.assertEqual(self.batches, [])
        self.assertEqual(clock.calls, 0)
        self.factory.current.emit(_line('keep me'))
        self.assertEqual(len(self.batches), 1)

    def test_level_threshold(self):
        engine = self._engine(min_level=TraceLevel.WARNING)
        engine.start()
        self.factory.current.emit(_line('info', 'I'), _line('error', 'E'))
        self.assertEqual([r.level for batch in self.batches for r in batch], [TraceLevel.ERROR])

    def test_malformed_lines_are_dropped(self):
        engine = self._engine()
        engine.start()
        self.factory.current.emit('--------- beginning of main', '', _line('ok'))
        self.assertEqual(len(self.batches), 1)
        self.assertEqual(self.batches[0][0].message, _message('ok'))

    def test_invalid_regex_filter_uses_substring(self):
        engine = self._engine(text_filter='[a-z')
        engine.start()
        self.factory.current.emit(_line('abc'), _line('has [a-z inside'))
        self.assertEqual([r.message for batch in self.batches for r in batch], [_message('has [a-z inside')])

    def test_regex_filter_is_case_insensitive(self):
        engine = self._engine(text_filter='FiLteR|Other', flush_interval_ms=0)
        clock = itertools.count()
        engine._clock = lambda: next(clock)
        engine.start()
        self.factory.current.emit(_line('a FILTER line'), _line('nothing'), _line('the other one'))
        self.assertEqual(
            [r.message for batch in self.batches for r in batch],
            [_message('a FILTER line'), _message('the other one')],
        )

    def test_restart_drops_pending_and_keeps_listener(self):
        clock = ScriptedClock(0, 1, 2, 3)
        engine = self._engine(clock=clock, flush_interval_ms=1000)
        engine.start()
        first = self.factory.current
        listener = first.listener
        first.emit(_line('flushed'), _line('pending'))
        self.assertEqual(engine.pending_count(), 1)

        engine.restart()

        self.assertTrue(first.stopped)
        second = self.factory.current
        self.assertIsNot(second, first)
        self.assertTrue(second.started)
        self.assertIs(second.listener, listener)
        self.assertEqual(engine.pending_count(), 0)
        self.assertTrue(engine.is_running())

        # Last flush time was reset, so the next line is flushed right away.
        second.emit(_line('fresh'))
        self.assertEqual(
            [[r.message for r in batch] for batch in self.batches],
            [[_message('flushed')], [_message('fresh')]],
        )

    def test_restart_from_idle_ends_running(self):
        engine = self._engine()
        engine.restart()
        self.assertTrue(engine.is_running())
        self.assertTrue(self.factory.current.started)

    def test_line_parsed_across_restart_is_not_delivered(self):
        old_line = _line('old pending')
        parser = BlockingParser(old_line)
        first_sources = [IterableLogSource([old_line])]

        def factory():
            return first_sources.pop() if first_sources else self.factory()

        engine = StreamEngine(factory, ImmediateDispatcher(), clock=ScriptedClock(0), parser=parser)
        engine.register_subscriber(self.batches.append)
        engine.start()
        old_source = engine.source
        self.assertTrue(parser.entered.wait(2.0))

        engine.restart()
        parser.release.set()

        self.assertTrue(old_source.join(2.0))
        self.assertEqual(self.batches, [])
        self.assertEqual(engine.pending_count(), 0)

        self.factory.current.emit(_line('after restart'))
        self.assertEqual(
            [[r.message for r in batch] for batch in self.batches],
            [[_message('after restart')]],
        )

    def test_lines_from_replaced_source_are_ignored(self):
        lingering = LingeringSource(_line('late line'))
        first_sources = [lingering]

        def factory():
            return first_sources.pop() if first_sources else self.factory()

        engine = StreamEngine(factory, ImmediateDispatcher(), clock=ScriptedClock(0))
        engine.register_subscriber(self.batches.append)
        engine.start()
        engine.stop()
        engine.start()
        self.assertIsNot(engine.source, lingering)

        lingering.gate.set()
        self.assertTrue(lingering.join(2.0))
        self.assertEqual(self.batches, [])

        self.factory.current.emit(_line('current'))
        self.assertEqual([r.message for batch in self.batches for r in batch], [_message('current')])

    def test_subscriber_failure_does_not_block_others(self):
        engine = self._engine()
        received = []

        def broken(batch):
            raise RuntimeError('subscriber failure')

        engine.unregister_subscriber(self.batches.append)
        engine.register_subscriber(broken)
        engine.register_subscriber(received.append)
        engine.start()
        self.factory.current.emit(_line('x'))
        self.assertEqual(len(received), 1)

    def test_unregistered_subscriber_gets_nothing(self):
        engine = self._engine()
        engine.unregister_subscriber(self.batches.append)
        engine.start()
        self.factory.current.emit(_line('x'))
        self.assertEqual(self.batches, [])

    def test_set_config_rejects_none(self):
        engine = self._engine(text_filter='abc')
        with self.assertRaises(InvalidConfigurationError):
            engine.set_config(None)
        self.assertEqual(engine.get_config().text_filter, 'abc')

    def test_set_config_changes_filter(self):
        engine = self._engine(flush_interval_ms=0)
        clock = itertools.count()
        engine._clock = lambda: next(clock)
        engine.start()
        engine.set_config(engine.get_config().replace(text_filter='second'))
        self.factory.current.emit(_line('first'), _line('second'))
        self.assertEqual([r.message for batch in self.batches for r in batch], [_message('second')])

    def test_flush_pending_posts_immediately(self):
        engine = self._engine(clock=ScriptedClock(0, 1, 2), flush_interval_ms=1000)
        engine.start()
        self.factory.current.emit(_line('one'), _line('two'))
        self.assertEqual(engine.flush_pending(), 1)
        self.assertEqual(engine.flush_pending(), 0)
        self.assertEqual([[r.message for r in batch] for batch in self.batches],
                         [[_message('one')], [_message('two')]])


class StreamEngineThreadedTests(unittest.TestCase):
    def test_lines_from_reader_thread_arrive_in_order_on_dispatcher(self):
        lines = [_line(f'line {index}', 'I') for index in range(200)]
        dispatcher = QueueDispatcher(name='test-dispatcher').start()
        clock = itertools.count()
        engine = StreamEngine(
            lambda: IterableLogSource(lines),
            dispatcher,
            clock=lambda: next(clock),
            config=StreamConfig(flush_interval_ms=5),
        )
        received = []
        threads = set()

        def subscriber(batch):
            threads.add(threading.current_thread().name)
            received.extend(batch)

        engine.register_subscriber(subscriber)
        try:
            engine.start()
            self.assertTrue(engine.source.join(5.0))
            engine.flush_pending()
            dispatcher.wait_idle()
        finally:
            dispatcher.stop()

        self.assertEqual([r.message for r in received], [_message(f'line {i}') for i in range(200)])
        self.assertEqual(threads, {'test-dispatcher'})


if __name__ == '__main__':
    unittest.main()
