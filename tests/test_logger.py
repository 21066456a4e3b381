import logging
import os
import tempfile
import unittest
from logging.handlers import TimedRotatingFileHandler

from viyaabhaaram.logger import setup_logger


class LoggerTests(unittest.TestCase):
    def test_handlers_are_added_once(self):
        logger = setup_logger("viyaabhaaram.test_once", level="WARNING")
        setup_logger("viyaabhaaram.test_once")
        self.assertEqual(len(logger.handlers), 1)
        self.assertEqual(logger.level, logging.WARNING)

    def test_rotating_file_handler_when_log_file_given(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "logs", "billing.log")
            logger = setup_logger("viyaabhaaram.test_file", log_file=path)
            try:
                logger.warning("stock update pending")
                self.assertTrue(any(isinstance(h, TimedRotatingFileHandler) for h in logger.handlers))
                self.assertTrue(os.path.exists(path))
            finally:
                for handler in list(logger.handlers):
                    handler.close()
                    logger.removeHandler(handler)


if __name__ == '__main__':
    unittest.main()
