"""
Exceptions raised by the imcview core.

Every error is recoverable: an operation that raises leaves the state it
was called on unchanged. Each class also derives from the closest builtin
so that callers can catch ``LookupError`` or ``ValueError`` generically.
"""


class ImcViewError(Exception):
    """Base exception for imcview."""


class NotFoundError(ImcViewError, LookupError):
    """Unknown channel or annotation id."""


class OutOfBoundsError(ImcViewError, IndexError):
    """Coordinate or region outside the acquisition raster."""


class InvalidGeometryError(ImcViewError, ValueError):
    """Malformed polygon input (unclosed, self-intersecting, empty)."""


class DegenerateStrokeError(ImcViewError, ValueError):
    """Stroke has too few distinct points to form a region."""


class InsufficientTrainingDataError(ImcViewError, ValueError):
    """Fewer than two labels, or a label without samples."""


class ModelChannelMismatchError(ImcViewError, ValueError):
    """The acquisition lacks channels the classifier was trained on."""


class InvalidStateError(ImcViewError, RuntimeError):
    """Stroke operation called in the wrong drawing state."""
