"""
Tests for the logging setup.
"""

import logging

from config.logging import REVIEW_LOG, setup_logging


def test_review_log_collects_warnings_only(tmp_path):
    logger = setup_logging("sitelog_review_test", log_dir=tmp_path)
    try:
        logger.info("Created new person: Kurt")
        logger.warning("[REVIEW] personnel 'ABC' in R-1: ambiguous")

        review = (tmp_path / REVIEW_LOG).read_text(encoding="utf-8")
        full = (tmp_path / "sitelog_review_test.log").read_text(encoding="utf-8")

        assert "[REVIEW] personnel 'ABC'" in review
        assert "Created new person" not in review
        assert "Created new person" in full
        assert "| WARNING  |" in review
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


def test_setup_logging_does_not_duplicate_handlers(tmp_path):
    logger = setup_logging("sitelog_handler_test", log_dir=tmp_path)
    try:
        again = setup_logging("sitelog_handler_test", log_dir=tmp_path)

        assert again is logger
        assert len(logger.handlers) == 3
        assert {h.level for h in logger.handlers} >= {logging.DEBUG, logging.WARNING}
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
