import logging

import pytest

from multi_chat_lib.chat_core import get_logger, setup_logging


@pytest.fixture
def library_logger():
    logger = logging.getLogger("multi_chat_lib")
    handlers = list(logger.handlers)
    level = logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)


def test_get_logger_nests_names_under_library() -> None:
    assert get_logger().name == "multi_chat_lib"
    assert get_logger("sync").name == "multi_chat_lib.sync"
    assert get_logger("multi_chat_lib.chat_core.merging").name == "multi_chat_lib.chat_core.merging"


def test_library_logger_has_null_handler() -> None:
    assert any(isinstance(h, logging.NullHandler) for h in logging.getLogger("multi_chat_lib").handlers)


def test_setup_logging_adds_one_stream_handler(library_logger) -> None:
    setup_logging("DEBUG")
    setup_logging(logging.ERROR)

    stream_handlers = [h for h in library_logger.handlers if not isinstance(h, logging.NullHandler)]
    assert len(stream_handlers) == 1
    assert library_logger.level == logging.DEBUG
