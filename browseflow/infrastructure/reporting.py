"""
Default AgentReporter on stdlib logging.

The library never prints; applications that want console narration
attach a handler to the `browseflow.reporter` logger.
"""

import logging

from browseflow.domain.interfaces.reporter import IAgentReporter

reporter_logger = logging.getLogger("browseflow.reporter")


class LoggingReporter(IAgentReporter):
    """success/info/loading at INFO, log at DEBUG, failure at ERROR."""

    def __init__(self, logger: logging.Logger = reporter_logger):
        self._logger = logger

    def success(self, message: str) -> None:
        self._logger.info(message)

    def failure(self, message: str) -> None:
        self._logger.error(message)

    def loading(self, message: str) -> None:
        self._logger.info(message)

    def info(self, message: str) -> None:
        self._logger.info(message)

    def log(self, message: str) -> None:
        self._logger.debug(message)
