"""Configuration schema using Pydantic.

Single data model and defaults, persisted to ~/.plughost/config.json.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

from plughost.handshake.types import CORE_PROTOCOL_VERSION, DEFAULT_MAX_LINE_BYTES


class HandshakeConfig(BaseModel):
    """Host-side handshake acceptance rules."""
    max_core_protocol_version: int = Field(default=CORE_PROTOCOL_VERSION, ge=1)
    expected_app_protocol_version: int | None = Field(default=None, ge=1)  # None accepts any app version
    max_line_bytes: int = Field(default=DEFAULT_MAX_LINE_BYTES, ge=64)


class LaunchConfig(BaseModel):
    """Process launch behaviour."""
    startup_timeout_seconds: float = Field(default=10.0, gt=0)
    terminate_grace_seconds: float = Field(default=2.0, ge=0)
    diagnostics: Literal["forward", "inherit"] = "forward"  # forward: plugin stderr -> host log
    diagnostics_level: str = "INFO"
    on_stdout_violation: Literal["terminate", "log"] = "terminate"


class DiscoveryConfig(BaseModel):
    """Where plugin executables are looked up, highest priority first."""
    env_var: str = "PATH"
    override_dir: str | None = None
    paths: list[str] = Field(default_factory=list)  # Searched after override_dir, before env_var entries
    install_dir: str = "~/.plughost/bin"
    include_install_dir: bool = True


class ReleaseConfig(BaseModel):
    """Release packaging and fetching."""
    plugin_name: str = ""
    targets: list[str] = Field(default_factory=list)  # Empty: host target only
    build_command: str = "cargo build --release --target {target}"
    toolchain_command: str | None = "rustup target add {target}"
    artifact_path: str = "target/{target}/release/{name}"
    output_dir: str = "target/release"
    repo: str = ""  # owner/name on GitHub
    download_url_template: str = "https://github.com/{repo}/releases/download/{tag}/{asset}"


class LoggingConfig(BaseModel):
    """Host log sinks."""
    level: str = "INFO"
    file: bool = False  # Also write ~/.plughost/logs/<file_name>.log
    file_name: str = "plughost"


class Config(BaseSettings):
    """Root configuration for plughost."""
    handshake: HandshakeConfig = Field(default_factory=HandshakeConfig)
    launch: LaunchConfig = Field(default_factory=LaunchConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def install_dir(self) -> Path:
        """Expanded directory that fetched plugins are installed into."""
        return Path(self.discovery.install_dir).expanduser()

    model_config = ConfigDict(
        env_prefix="PLUGHOST_",
        env_nested_delimiter="__"
    )
