# tests/test_log.py
"""
Unit-tests for PluginPresets.log.log
(covers TankHandler, the Qt bridge and the setup helpers).

Run:
    python -m unittest tests.test_log
"""
import logging
from typing import List

from PySide6.QtCore import QtMsgType

from PluginPresets.log.log import (
    TankHandler,
    get_tank,
    qt_message_handler,
    set_logging_level,
    setup_logging,
)
from PluginPresets.ui.actions import signals
from tests.base import BaseTestCase, capture_signal


class LogModuleTests(BaseTestCase):
    """
    Each test starts with a fresh root logger configured by
    setup_logging(enable_stream_handler=False).
    """

    def setUp(self) -> None:
        super().setUp()
        logging.disable(logging.NOTSET)
        setup_logging(enable_stream_handler=False,
                      enable_qt_handler=False,
                      log_level=logging.DEBUG)

        self.root_logger = logging.getLogger()
        self.tank: TankHandler = get_tank()

    def tearDown(self) -> None:
        setup_logging(enable_qt_handler=False)
        super().tearDown()

    def test_setup_logging_installs_tank_handler_only(self):
        self.assertEqual(
            [type(h) for h in self.root_logger.handlers],
            [TankHandler],
        )
        self.assertIs(get_tank(), self.root_logger.handlers[0])

    def test_tank_handler_stores_and_filters(self):
        self.tank.clear_logs()
        logging.debug('dbg message')
        logging.error('err message')
        self.assertEqual(len(self.tank.tank), 2)
        errs: List[str] = self.tank.get_logs(logging.ERROR)
        self.assertEqual(len(errs), 1)
        self.assertIn('err message', errs[0])
        self.tank.clear_logs()
        self.assertEqual(len(self.tank.tank), 0)

    def test_tank_is_bounded(self):
        tank = TankHandler(size=3)
        logger = logging.getLogger('bounded')
        logger.addHandler(tank)
        try:
            for i in range(5):
                logger.info(f'record {i}')
        finally:
            logger.removeHandler(tank)
        self.assertEqual(tank.get_logs(), ['record 2', 'record 3', 'record 4'])

    def test_get_logs_filters_by_text(self):
        self.tank.clear_logs()
        logging.info('Applying preset: Raid')
        logging.warning('Component ghost was not loaded within the timeout')
        self.assertEqual(len(self.tank.get_logs(contains='Raid')), 1)
        self.assertEqual(len(self.tank.get_logs(logging.WARNING, contains='ghost')), 1)
        self.assertEqual(self.tank.get_logs(logging.WARNING, contains='Raid'), [])

    def test_error_emits_show_logs(self):
        with capture_signal(signals.showLogs) as triggered:
            logging.warning('not yet')
            self.assertEqual(triggered, [])
            logging.error('should emit signal')
        self.assertEqual(len(triggered), 1)

    def test_set_logging_level_accepts_valid_levels(self):
        set_logging_level(logging.ERROR)
        self.assertEqual(self.root_logger.level, logging.ERROR)
        for h in self.root_logger.handlers:
            self.assertEqual(h.level, logging.ERROR)

    def test_set_logging_level_rejects_non_int(self):
        with self.assertRaises(ValueError):
            set_logging_level('INFO')  # type: ignore[arg-type]

    def test_set_logging_level_rejects_unknown(self):
        with self.assertRaises(ValueError):
            set_logging_level(1234)

    def test_qt_message_handler_maps_to_logging(self):
        qt_message_handler(QtMsgType.QtInfoMsg, None, 'Qt info')
        qt_message_handler(QtMsgType.QtWarningMsg, None, 'Qt warn ')
        msgs = self.tank.get_logs()
        self.assertTrue(any('Qt info' in m for m in msgs))
        self.assertTrue(any(m.endswith('Qt warn') for m in msgs))

    def test_qt_message_handler_fatal_exits(self):
        with self.assertRaises(SystemExit):
            qt_message_handler(QtMsgType.QtFatalMsg, None, 'fatal')

    def test_status_exception_is_logged(self):
        from PluginPresets.status import status

        self.tank.clear_logs()
        with capture_signal(signals.error) as errors:
            ex = status.PresetNotFoundException('"Ghost"')
        self.assertIn('"Ghost"', str(ex))
        self.assertEqual(errors, [('"Ghost"',)])
        self.assertTrue(any('"Ghost"' in m for m in self.tank.get_logs(logging.ERROR)))
