# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
from socket_mailer.logger import ROOT_LOGGER_NAME, get_logger


def test_get_logger_nests_under_package():
    assert get_logger("session").name == "socket_mailer.session"
    assert get_logger().name == ROOT_LOGGER_NAME


def test_get_logger_keeps_qualified_names():
    assert get_logger("socket_mailer.delivery").name == "socket_mailer.delivery"


def test_get_logger_reuses_existing_logger():
    logger = get_logger("TestLogger")
    handler_count = len(logger.handlers)

    same_logger = get_logger("TestLogger")
    assert logger is same_logger
    assert len(same_logger.handlers) == handler_count
