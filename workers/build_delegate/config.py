"""
Delegation engine configuration
"""
import tempfile
from pathlib import Path
from typing import Mapping, Optional, Tuple, Type

from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings, read from an invocation's environment snapshot"""

    # Staging
    BUILD_DELEGATE_STAGING_ROOT: Optional[str] = None
    BUILD_DELEGATE_KEEP_STAGING: bool = False  # keep the staged copy for debugging
    BUILD_DELEGATE_MAX_NAME_ATTEMPTS: int = 16
    BUILD_DELEGATE_QUALIFY_MANIFEST: bool = True

    # Toolchain
    BUILD_DELEGATE_TOOLCHAIN: Optional[str] = None
    BUILD_DELEGATE_TIMEOUT: Optional[int] = None  # seconds

    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Only the snapshot passed to from_environ() is read, never os.environ.
        return (init_settings,)

    @property
    def staging_root(self) -> Path:
        """Root directory under which staged copies are created"""
        if self.BUILD_DELEGATE_STAGING_ROOT:
            return Path(self.BUILD_DELEGATE_STAGING_ROOT)
        return Path(tempfile.gettempdir())

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "Settings":
        """Build settings from an explicit environment snapshot."""
        values = {
            name: environ[name]
            for name in cls.model_fields
            if name in environ and environ[name] != ""
        }
        return cls(**values)
