# cuprite/schemas/settings.py
"""
Centralized settings management using pydantic-settings.

`BrowserSettings` collects the endpoint of an already running browser and
the timeouts the session layer applies. Values come from (highest first)
explicit keyword arguments, ``CUPRITE_*`` environment variables, a
``.env`` file, and the ``browser:`` section of ``config.yaml``.
"""
from typing import Any, Dict, Optional, Tuple, Type

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from cuprite.utils.config import get_config


class ConfigFileSettingsSource(PydanticBaseSettingsSource):
    """Settings source for the ``browser:`` section of ``config.yaml``."""

    def _section(self) -> Dict[str, Any]:
        section = get_config().get("browser")
        return dict(section) if isinstance(section, dict) else {}

    def get_field_value(self, field: FieldInfo, field_name: str) -> Tuple[Any, str, bool]:
        return self._section().get(field_name), field_name, False

    def __call__(self) -> Dict[str, Any]:
        section = self._section()
        return {
            name: section[name]
            for name in self.settings_cls.model_fields
            if section.get(name) is not None
        }


class BrowserSettings(BaseSettings):
    """
    Connection and timing options for one browser session.

    :ivar host: Host of the browser's remote debugging endpoint.
    :vartype host: str
    :ivar port: Port of the browser's remote debugging endpoint.
    :vartype port: int
    :ivar ws_url: Explicit browser websocket URL; skips HTTP discovery.
    :vartype ws_url: Optional[str]
    :ivar command_timeout: Seconds to wait for a command response, or None.
    :vartype command_timeout: Optional[float]
    :ivar navigation_timeout: Seconds `visit` waits for the frame to load.
    :vartype navigation_timeout: Optional[float]
    :ivar window_size: Viewport width and height applied on connect.
    :vartype window_size: Tuple[int, int]
    """

    host: str = "127.0.0.1"
    port: int = Field(9222, ge=1, le=65535)
    ws_url: Optional[str] = None
    command_timeout: Optional[float] = Field(None, gt=0)
    navigation_timeout: Optional[float] = Field(None, gt=0)
    window_size: Tuple[int, int] = (1024, 768)

    model_config = SettingsConfigDict(
        env_prefix="CUPRITE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            ConfigFileSettingsSource(settings_cls),
            file_secret_settings,
        )

    @classmethod
    def from_config(cls, **overrides: Any) -> "BrowserSettings":
        """Builds settings from every layer, ``overrides`` taking precedence.

        :return: The merged settings.
        :rtype: BrowserSettings
        """
        return cls(**overrides)

    @property
    def http_url(self) -> str:
        return f"http://{self.host}:{self.port}"
