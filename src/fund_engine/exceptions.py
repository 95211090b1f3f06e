"""
Error taxonomy for the Fund Performance Engine.

Only malformed input and illegal state transitions surface as exceptions.
Zero denominators and IRR non-convergence are handled where they occur and
return 0 / the last estimate instead.
"""


class FundEngineError(Exception):
    """Base class for all engine errors."""
    pass


class InputError(FundEngineError, ValueError):
    """Malformed or missing required inputs."""
    pass


class StateTransitionError(InputError):
    """An allocation or record update the status machine does not allow."""
    pass


class ConcurrentUpdateError(FundEngineError):
    """A whole-record save was based on a stale version of the record."""
    pass


class RecordNotFoundError(FundEngineError, KeyError):
    """A requested fund, investor or transaction record does not exist."""
    pass
