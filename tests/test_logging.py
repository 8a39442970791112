import logging

import pytest

from rabbit_hole.utils.logging import get_logger, level_for_verbosity


@pytest.mark.parametrize(
    "verbosity, expected",
    [
        (0, (logging.INFO, logging.WARNING)),
        (1, (logging.DEBUG, logging.WARNING)),
        (2, (logging.DEBUG, logging.DEBUG)),
        (5, (logging.DEBUG, logging.DEBUG)),
    ],
)
def test_level_for_verbosity(verbosity, expected):
    assert level_for_verbosity(verbosity) == expected


def test_get_logger_returns_named_logger():
    assert get_logger("rabbit_hole.test").name == "rabbit_hole.test"
