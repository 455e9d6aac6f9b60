"""Configuration file loading and validation."""

import logging
from pathlib import Path
from typing import List

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from .consts import (
    DATABASE_PATH,
    GLOBAL_REGISTRATIONS_COLLECTION,
    SUBMITTED_RESET_DELAY,
    TIMEOUT_UPLOAD,
    UPLOAD_FALLBACK_PRESETS,
    UPLOAD_ROOT_FOLDER,
)
from .enums import StoreType, UniquenessPolicy
from .errors import ConfigException

logger = logging.getLogger(__name__)


class StoreConfig(BaseModel):
    """Document store configuration."""

    type: StoreType = StoreType.DB
    path: str = Field(default=DATABASE_PATH)


class UploadConfig(BaseModel):
    """Cloudinary upload configuration."""

    enabled: bool = False
    cloud_name: str = ""
    upload_preset: str = ""
    fallback_presets: List[str] = Field(default_factory=lambda: list(UPLOAD_FALLBACK_PRESETS))
    root_folder: str = Field(default=UPLOAD_ROOT_FOLDER)
    timeout: int = Field(default=TIMEOUT_UPLOAD, ge=1)

    @model_validator(mode="before")
    @classmethod
    def default_enabled(cls, values):
        if not isinstance(values, dict):
            return values

        if "enabled" not in values:
            values["enabled"] = bool(values.get("cloud_name"))
        return values

    @model_validator(mode="after")
    def validate_upload_config(self) -> "UploadConfig":
        if not self.enabled:
            return self

        missing_fields = []
        if not self.cloud_name:
            missing_fields.append("cloud_name")
        if not self.upload_preset:
            missing_fields.append("upload_preset")

        if missing_fields:
            raise ValueError(
                f"Missing required fields for uploads: {', '.join(missing_fields)}"
            )
        return self

    @field_validator("root_folder")
    @classmethod
    def validate_root_folder(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("upload.root_folder cannot be empty")
        return v


class UniquenessConfig(BaseModel):
    """Uniqueness check policy."""

    on_error: UniquenessPolicy = UniquenessPolicy.FAIL_OPEN
    discard_stale: bool = True


class SubmissionConfig(BaseModel):
    """Submission pipeline configuration."""

    reset_delay: float = Field(default=SUBMITTED_RESET_DELAY, ge=0)
    global_collection: str = Field(default=GLOBAL_REGISTRATIONS_COLLECTION)

    @field_validator("global_collection")
    @classmethod
    def validate_collection(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("submission.global_collection cannot be empty")
        return v.strip()


class Config(BaseSettings):
    """Application configuration."""

    data_dir: str = Field(default="data")
    log_file: str = Field(default="")

    store: StoreConfig = Field(default_factory=StoreConfig)
    upload: UploadConfig = Field(default_factory=UploadConfig)
    uniqueness: UniquenessConfig = Field(default_factory=UniquenessConfig)
    submission: SubmissionConfig = Field(default_factory=SubmissionConfig)

    model_config = SettingsConfigDict(
        env_prefix="FORMFLOW_",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @classmethod
    def load_from_file(cls, config_path: str) -> "Config":
        """Load configuration from specified path."""
        path = Path(config_path)
        if not path.exists():
            raise ConfigException(f"Configuration file not found: {config_path}")

        class _Config(cls):
            model_config = SettingsConfigDict(
                toml_file=str(path),
                env_prefix="FORMFLOW_",
                env_nested_delimiter="__",
            )

        try:
            return _Config()
        except ValidationError as e:
            error_lines = ["Configuration validation failed:"]
            for error in e.errors():
                loc = " -> ".join(str(item) for item in error["loc"])
                error_lines.append(f"  - {loc}: {error['msg']}")
            raise ConfigException("\n".join(error_lines)) from e
        except ValueError as e:
            # tomllib.TOMLDecodeError subclasses ValueError
            raise ConfigException(f"Invalid configuration file {config_path}: {e}") from e

    def get_log_file(self) -> Path:
        if self.log_file:
            return Path(self.log_file)
        return Path(self.data_dir) / "formflow.log"
