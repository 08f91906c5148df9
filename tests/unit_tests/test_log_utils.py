"""
Unit tests for logging utilities.
"""

import logging
import os
import tempfile
import unittest
from log_utils import setup_logging


class TestLogUtils(unittest.TestCase):
    """Test logging utilities."""

    def test_setup_logging_without_file(self):
        """Test logging to stderr only."""
        logger = setup_logging(log_file=None)
        self.assertIsInstance(logger, logging.Logger)

    def test_setup_logging_verbose_with_file(self):
        """Test verbose logging setup writing to a log file."""
        with tempfile.TemporaryDirectory() as tmp:
            log_file = os.path.join(tmp, "upgrade.log")
            logger = setup_logging(verbose=True, log_file=log_file)
            self.assertIsInstance(logger, logging.Logger)
            self.assertTrue(os.path.exists(log_file))
            # Release the file handler basicConfig may have attached
            root = logging.getLogger()
            for handler in list(root.handlers):
                if isinstance(handler, logging.FileHandler):
                    root.removeHandler(handler)
                    handler.close()


if __name__ == "__main__":
    unittest.main()
