"""
Error taxonomy for the abandonment workflow.

Per-parcel errors (insufficient data, invalid observations) are recorded
and never abort a batch. Configuration errors are fatal at startup.
"""

from typing import Optional


class ParcelAbandonmentError(Exception):
    """Base class for all errors raised by this package."""


class InsufficientDataError(ParcelAbandonmentError):
    """Series has fewer valid observations than the fitter needs."""

    def __init__(self, parcel_id, n_valid: int, n_required: int):
        self.parcel_id = parcel_id
        self.n_valid = n_valid
        self.n_required = n_required
        super().__init__(
            f"Parcel {parcel_id!r}: {n_valid} valid observations, "
            f"need at least {n_required}"
        )

    def __reduce__(self):
        return type(self), (self.parcel_id, self.n_valid, self.n_required)


class InvalidObservationError(ParcelAbandonmentError):
    """Observation value outside [0, 1], or timestamp unreadable or out of order.

    ``parcel_id`` and ``position`` are None for errors that concern a
    whole input column.
    """

    def __init__(self, parcel_id, position: Optional[int], reason: str):
        self.parcel_id = parcel_id
        self.position = position
        self.reason = reason
        where = []
        if parcel_id is not None:
            where.append(f"Parcel {parcel_id!r}")
        if position is not None:
            where.append(f"observation {position}")
        super().__init__(f"{', '.join(where)}: {reason}" if where else reason)

    def __reduce__(self):
        return type(self), (self.parcel_id, self.position, self.reason)


class ConfigurationError(ParcelAbandonmentError, ValueError):
    """Parameter outside its documented domain."""


class ModelSelectionDegenerateError(ParcelAbandonmentError):
    """All candidate models fit equally well.

    Never raised out of the selector; the tie is resolved by preferring
    the model with the fewest segments.
    """
