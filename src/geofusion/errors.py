from dataclasses import dataclass


class GeofusionError(Exception):
    pass


class CodecError(GeofusionError):
    """Raised when a geometry cannot be decoded from or encoded to a
    binary or text representation."""


class TruncatedError(CodecError):
    pass


class UnknownTypeError(CodecError):
    pass


class InvalidRingError(CodecError):
    pass


class UnsupportedDialectFeatureError(CodecError):
    pass


class WktError(CodecError):
    pass


class GeometryError(GeofusionError):
    """Raised by the per-row algorithms of the function layer."""


class DegenerateInputError(GeometryError):
    pass


class UnsupportedOperationError(GeometryError):
    pass


class SpatialIndexError(GeofusionError):
    pass


class EmptyIndexError(SpatialIndexError):
    pass


# errors that are mapped to a null row instead of failing a batch
ROW_ERRORS = (CodecError, GeometryError)


@dataclass(frozen=True)
class Diagnostic:
    """A row-level failure recorded while processing a batch."""

    row: int
    error: GeofusionError

    @property
    def kind(self):
        return type(self.error).__name__

    def __str__(self):
        return f"row {self.row}: {self.kind}: {self.error}"
