from __future__ import annotations


class ReducerError(Exception):
    pass


class UsageError(ReducerError):
    """Bad configuration, detected before any reduction step is attempted."""


class OracleUnavailableError(ReducerError):
    """The execution backend could not produce a verdict for a candidate."""


class RenderTimeoutError(OracleUnavailableError):
    pass


class FatalReductionError(ReducerError):
    pass


class InitialProgramNotInterestingError(FatalReductionError):
    pass
