"""Configuration module for the Arduino uploader"""
import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from .errors import BoardProfileError


class UploaderConfig(BaseModel):
    """Toolchain locations and timing knobs shared by upload sessions"""

    tools_path: Path = Field(
        default_factory=lambda: Path.home() / ".arduino_uploader" / "tools",
        description="Directory containing the bundled Arduino toolchain"
    )

    user_data_path: Path = Field(
        default_factory=lambda: Path.home() / ".arduino_uploader" / "data",
        description="Directory for session workspaces and the arduino-cli config file"
    )

    arduino_cli_path: str | None = Field(
        default=None,
        description="Explicit arduino-cli executable (defaults to the bundled one)"
    )

    # Timing
    abort_poll_interval: float = Field(
        default=0.1,
        description="Seconds between checks of the abort flag while a tool runs"
    )

    abort_release_delay: float = Field(
        default=0.1,
        description="Seconds to wait after an aborted flash so the OS releases the port"
    )

    read_chunk_size: int = Field(
        default=4096,
        description="Maximum bytes read from a tool stream per chunk"
    )

    output_drain_timeout: float = Field(
        default=0.5,
        description="Seconds to keep reading output after the tool exits while its children still hold the pipes"
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @property
    def arduino_path(self) -> Path:
        """Bundled Arduino directory (also used as the arduino-cli data dir)"""
        return self.tools_path / "Arduino"

    @property
    def firmware_dir(self) -> Path:
        """Directory holding prebuilt realtime firmwares"""
        return self.tools_path.parent / "firmwares" / "arduino"

    @property
    def config_file_path(self) -> Path:
        return self.user_data_path / "arduino" / "arduino-cli.yaml"

    @property
    def cli_path(self) -> str:
        if self.arduino_cli_path:
            return self.arduino_cli_path
        return str(self.arduino_path / "arduino-cli")

    def ensure_directories(self) -> None:
        """Create necessary directories if they don't exist"""
        self.config_file_path.parent.mkdir(parents=True, exist_ok=True)


class BoardProfile(BaseModel):
    """Board-specific compile and upload parameters"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    fqbn: str | dict[str, str] = Field(
        ...,
        description="Fully Qualified Board Name, or a map of platform to FQBN"
    )

    library: list[str] = Field(
        default_factory=list,
        description="Extra library directories passed to the compiler when present"
    )

    firmware: str | None = Field(
        default=None,
        description="Realtime firmware file name under the firmware directory"
    )

    post_upload_delay: int | None = Field(
        default=None,
        alias="postUploadDelay",
        description="Milliseconds to wait after a successful flash for USB re-enumeration"
    )

    def resolve_fqbn(self, platform: str | None = None) -> str:
        """Return the FQBN for this host, picking from the per-platform map if needed"""
        if isinstance(self.fqbn, str):
            return self.fqbn

        platform = platform or sys.platform
        if platform.startswith("linux"):
            platform = "linux"
        try:
            return self.fqbn[platform]
        except KeyError:
            raise BoardProfileError(
                f"No FQBN configured for platform '{platform}' "
                f"(available: {', '.join(sorted(self.fqbn)) or 'none'})"
            ) from None
