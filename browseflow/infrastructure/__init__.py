"""
Infrastructure Layer - event bus, handlers, persistence and reporting.
"""

from .reporting import LoggingReporter

__all__ = ["LoggingReporter"]
