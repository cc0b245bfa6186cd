"""Configuration schema using Pydantic.

Session defaults, overridable from the environment or ~/.nvimclient/config.json.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SessionConfig(BaseSettings):
    """Settings shared by every session constructor."""

    # NVIM_BIN is the historical override for the executable, so it bypasses the prefix.
    nvim_bin: str = Field(default="nvim", validation_alias=AliasChoices("nvim_bin", "NVIM_BIN"))
    embed_flag: str = "--embed"
    handshake_method: str = "nvim_get_api_info"
    call_timeout: float | None = None
    handshake_timeout: float | None = 10.0
    notification_queue_size: int = Field(default=1024, ge=0)
    child_shutdown_timeout: float = Field(default=2.0, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="NVIMCLIENT_",
        populate_by_name=True,
        extra="ignore",
    )
