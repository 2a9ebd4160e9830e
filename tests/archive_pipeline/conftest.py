"""Fixtures local to the archive pipeline tests."""

from __future__ import annotations

import logging

import pytest


@pytest.fixture
def pipeline_logger() -> logging.Logger:
    logger = logging.getLogger("test.archive_pipeline")
    logger.setLevel(logging.DEBUG)
    return logger
