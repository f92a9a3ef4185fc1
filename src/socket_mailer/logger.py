# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Logging utilities for the socket mailer.

This module provides a centralized logger helper. The actual logging setup
(level, handlers, format) is configured via ``logging.basicConfig()`` in the
CLI entry point, so library code never installs handlers on its own.

Example:
    Typical usage in a module::

        from socket_mailer.logger import get_logger

        logger = get_logger("socket_mailer.delivery")
        logger.info("Delivery completed")
"""

import logging

ROOT_LOGGER_NAME = "socket_mailer"


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Retrieve a logger bound to the socket mailer hierarchy.

    Names that are not already below ``socket_mailer`` are nested under it,
    so a single ``logging.getLogger("socket_mailer")`` controls every
    component.

    Args:
        name: The logger name. Defaults to "socket_mailer".

    Returns:
        A ``logging.Logger`` instance bound to the given name.

    Example:
        >>> logger = get_logger("session")
        >>> logger.name
        'socket_mailer.session'
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)
