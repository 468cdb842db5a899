from pydantic import BaseModel, ConfigDict, Field


class ReferenceItem(BaseModel):
    """One photo contributed to an identity collage.

    ``image`` is the caller-supplied path, e.g. ``/uploads/a.jpg``. Items are
    built per request and never persisted; only the derived collage is.
    """

    index: int = Field(ge=0)
    role: str | None = None
    image: str

    @property
    def label(self) -> str:
        """Badge text drawn on the collage tile: ``#1 identity`` or ``#1``."""
        return f"#{self.index} {self.role}" if self.role else f"#{self.index}"


class FaceBox(BaseModel):
    """Face bounding box in normalized coordinates (fractions of width/height).

    The origin is the top-left corner of the displayed image. NaN and infinity
    are rejected so helper output can always be converted to pixels.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    x: float
    y: float
    width: float
    height: float


class Detection(BaseModel):
    """Parsed stdout of the face-detection helper."""

    width: int = 0
    height: int = 0
    faces: list[FaceBox]


class SanitizeResult(BaseModel):
    """Outcome of a single sanitize attempt.

    ``path`` is always usable by the caller: the sanitized public path on
    success, the original input value on failure.
    """

    source: str
    path: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
