# src/idivc/errors.py
from __future__ import annotations


class IdivcError(Exception):
    """Base class for every fatal condition raised by idivc."""


class InvalidSource(IdivcError, OSError):
    """A calibration or input file could not be opened."""


class MissingCalibrationSet(IdivcError, KeyError):
    """The calibration file lacks the expected named series."""

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return str(self.args[0]) if self.args else ""


class SensorIdOutOfRange(IdivcError, ValueError):
    """A calibration row names a sensor outside [0, N_SENSORS)."""


class IntegrityError(IdivcError):
    """Input containers are inconsistent with each other or lack structure."""


class SequentialAccessError(IdivcError, IndexError):
    """An event index was requested out of sequential order."""


class OutputExistsError(IdivcError, FileExistsError):
    """The output path exists and overwriting was not allowed."""


class ChannelMapError(IdivcError, ValueError):
    """A channel map table is malformed."""


class InputNameError(IdivcError, ValueError):
    """An input file does not follow the *base*.<suffix> naming convention."""
