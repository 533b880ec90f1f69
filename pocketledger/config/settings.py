"""
Configuration Management for Pocket Ledger

Every external collaborator (Tesseract, Gemini, Cloudinary, the database)
gets its own settings class and env prefix. A missing key fails only the
component that reads it.

DESIGN DECISION: The heuristic thresholds are plain data (HeuristicThresholds)
and can be built without touching the environment.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TesseractSettings(BaseSettings):
    """Local Tesseract OCR engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="TESSERACT_",
        extra="ignore"
    )

    cmd: Optional[str] = Field(
        default=None,
        description="Path to the tesseract binary (uses PATH when unset)"
    )
    languages: str = Field(
        default="tur+eng",
        description="Tesseract language packs, Turkish + English receipts"
    )
    config: str = Field(
        default="--oem 3 --psm 6",
        description="Extra command line flags passed to tesseract"
    )


class GeminiSettings(BaseSettings):
    """Gemini vision model used as the paid OCR fallback."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Upper bound for one vision call"
    )


class CloudinarySettings(BaseSettings):
    """Cloudinary blob storage for receipt images."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )
    folder: str = Field(
        default="receipts",
        description="Folder receipt images are uploaded into"
    )


class DatabaseSettings(BaseSettings):
    """Ledger database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///pocketledger.db",
        description="SQLAlchemy database URL"
    )
    echo: bool = Field(
        default=False,
        description="Log emitted SQL"
    )


class HeuristicThresholds(BaseModel):
    """
    Thresholds deciding whether a local OCR result is trusted as-is.

    CRITICAL: The defaults ARE the accepted behavior. Changing them changes
    which receipts are sent to the paid vision service.
    """
    model_config = ConfigDict(frozen=True)

    min_confidence: int = Field(
        default=60,
        ge=0,
        le=100,
        description="Minimum local confidence to skip the AI fallback"
    )
    high_confidence: int = Field(
        default=75,
        ge=0,
        le=100,
        description="Confidence at which large totals are no longer suspicious"
    )
    large_amount: Decimal = Field(
        default=Decimal("1000"),
        gt=0,
        description="Totals at or above this are checked for dropped digits"
    )
    min_items_text_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Share of item names that must contain letters"
    )
    placeholder_description: str = Field(
        default="Fiş Taraması",
        description="Description the local parser emits when no merchant is found"
    )


class HeuristicSettings(BaseSettings):
    """Environment overrides for the OCR acceptance heuristics."""

    model_config = SettingsConfigDict(
        env_prefix="OCR_HEURISTIC_",
        extra="ignore"
    )

    min_confidence: int = Field(default=60, ge=0, le=100)
    high_confidence: int = Field(default=75, ge=0, le=100)
    large_amount: Decimal = Field(default=Decimal("1000"), gt=0)
    min_items_text_ratio: float = Field(default=0.5, ge=0.0, le=1.0)

    def to_thresholds(self) -> HeuristicThresholds:
        return HeuristicThresholds(
            min_confidence=self.min_confidence,
            high_confidence=self.high_confidence,
            large_amount=self.large_amount,
            min_items_text_ratio=self.min_items_text_ratio,
        )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # File upload limits
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt image size in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp",
        description="Comma-separated list of supported image formats"
    )

    # Ledger behavior
    undo_window_seconds: float = Field(
        default=10.0,
        gt=0,
        description="How long a deleted transaction can be restored"
    )
    receipt_url_ttl_seconds: int = Field(
        default=31536000,
        gt=0,
        description="Lifetime of the signed receipt image URL (one year)"
    )
    default_currency: str = Field(
        default="TRY",
        min_length=3,
        max_length=3,
        description="Currency assumed when a receipt does not show one"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Sub-settings are read from the environment on every access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def tesseract(self) -> TesseractSettings:
        return TesseractSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def heuristics(self) -> HeuristicThresholds:
        return HeuristicSettings().to_thresholds()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Cached settings root; get_settings.cache_clear() re-reads the environment.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Report which settings groups load.

    Failed groups also get a "<name>_error" entry with the message.
    """
    results = {}
    settings = get_settings()

    for name in ("tesseract", "gemini", "cloudinary", "database", "heuristics", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
