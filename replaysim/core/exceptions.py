"""
Exceptions Module
=================

Error hierarchy for the replay simulator.

Fatal conditions (bad run parameters, malformed events, collaborators that
do not satisfy their interface) raise one of these and abort the run.
Order validation failures from the fill model are NOT exceptions; they are
returned as rejected execution results.
"""

from __future__ import annotations


class ReplaySimError(Exception):
    """Base exception for all simulator errors."""
    pass


class ConfigurationError(ReplaySimError):
    """Invalid run parameters, settings or collaborators."""
    pass


class DataError(ReplaySimError):
    """Market data related errors."""
    pass


class EventValidationError(DataError):
    """A raw event could not be normalized."""
    pass


class BacktestError(ReplaySimError):
    """Errors raised while replaying the event stream."""
    pass


class UnknownEventError(BacktestError):
    """An event of unrecognized kind reached dispatch."""
    pass
