import logging
import os
import sys
import unittest
from logging.handlers import RotatingFileHandler

from fakes import TempDirTestCase
from segsub.log_setup import setup_logging


class TestSetupLogging(TempDirTestCase):

    def setUp(self):
        super().setUp()
        root = logging.getLogger()
        saved_handlers = root.handlers[:]
        saved_level = root.level
        for handler in saved_handlers:
            root.removeHandler(handler)
        self.addCleanup(self.restore_root, saved_handlers, saved_level)

    def restore_root(self, handlers, level):
        root = logging.getLogger()
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    def test_log_file_is_created_in_log_dir(self):
        log_dir = self.path("logs", "nested")

        setup_logging(log_level=logging.DEBUG, log_dir=log_dir, log_file="run.log", console=False)
        logging.getLogger("segsub.test").debug("hello log file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        with open(os.path.join(log_dir, "run.log"), encoding="utf-8") as f:
            content = f.read()
        self.assertIn("hello log file", content)
        self.assertIn("[segsub.test:", content)
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_console_can_be_turned_off(self):
        setup_logging(log_dir=self.path("logs"), console=False)

        handlers = logging.getLogger().handlers
        self.assertEqual([type(h) for h in handlers], [RotatingFileHandler])

    def test_console_handler_writes_to_stdout(self):
        setup_logging(log_dir=self.path("logs"))

        streams = [h.stream for h in logging.getLogger().handlers if type(h) is logging.StreamHandler]
        self.assertEqual(streams, [sys.stdout])

    def test_second_call_replaces_handlers(self):
        setup_logging(log_dir=self.path("bootstrap"), console=False)
        bootstrap = logging.getLogger().handlers[0]

        setup_logging(log_dir=self.path("configured"), log_file="final.log", console=False)

        handlers = logging.getLogger().handlers
        self.assertEqual(len(handlers), 1)
        self.assertIsNot(handlers[0], bootstrap)
        self.assertEqual(handlers[0].baseFilename, os.path.abspath(self.path("configured", "final.log")))
        self.assertIsNone(bootstrap.stream)

    def test_unwritable_log_dir_keeps_console_only(self):
        blocker = self.write("not-a-dir", "file in the way")

        setup_logging(log_dir=os.path.join(blocker, "logs"))

        handlers = logging.getLogger().handlers
        self.assertEqual([type(h) for h in handlers], [logging.StreamHandler])


if __name__ == "__main__":
    unittest.main()
