import re
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VERSION_PATTERN = re.compile(r"^[A-Za-z0-9._]+$")


class Settings(BaseSettings):
    data_dir: Path = Field(
        default=Path("./data"),
        validation_alias=AliasChoices("data_dir", "DATA_DIR"),
    )

    collage_version: str = "v2"
    collage_tile_size: int = 448
    collage_gap: int = 16
    collage_outer_margin: int = 20
    collage_jpeg_quality: int = 90

    face_blur_sigma: float = 28.0
    face_padding_ratio: float = 0.2
    sanitized_jpeg_quality: int = 88

    face_detection_enabled: bool = True
    face_detector_command: list[str] | None = None
    face_detector_platforms: list[str] | None = None
    face_detector_timeout_s: float = 7.0
    face_detector_max_output_bytes: int = 1024 * 1024

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="REFSAN_",
        env_file_encoding="utf-8",
    )

    @field_validator("collage_version")
    @classmethod
    def version_must_be_filename_safe(cls, v: str) -> str:
        # embedded verbatim in artifact filenames
        if not _VERSION_PATTERN.match(v):
            raise ValueError("collage_version may only contain letters, digits, '.' and '_'")
        return v

    @field_validator("collage_tile_size")
    @classmethod
    def tile_size_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("collage_tile_size must be at least 1")
        return v

    @field_validator("collage_gap", "collage_outer_margin")
    @classmethod
    def spacing_must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("collage spacing must not be negative")
        return v

    @field_validator("collage_jpeg_quality", "sanitized_jpeg_quality")
    @classmethod
    def quality_must_be_in_jpeg_range(cls, v: int) -> int:
        if not 1 <= v <= 95:
            raise ValueError("JPEG quality must be between 1 and 95")
        return v

    @field_validator("face_blur_sigma", "face_detector_timeout_s")
    @classmethod
    def must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("face_padding_ratio")
    @classmethod
    def padding_must_be_fraction(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("face_padding_ratio must be between 0.0 and 1.0")
        return v

    @field_validator("face_detector_max_output_bytes")
    @classmethod
    def output_limit_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("face_detector_max_output_bytes must be at least 1")
        return v

    @field_validator("face_detector_command")
    @classmethod
    def command_must_not_be_empty(cls, v: list[str] | None) -> list[str] | None:
        if v is not None and not v:
            raise ValueError("face_detector_command must name an executable")
        return v

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / "uploads"
