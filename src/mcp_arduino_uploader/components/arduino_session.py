"""Arduino upload session: build and flash for one board on one port"""

import asyncio
import logging
import os
from pathlib import Path

from ..config import BoardProfile, UploaderConfig
from ..errors import BoardProfileError, UnknownExitError, WorkspaceWriteError
from .cli_config import ArduinoCliConfig
from .output_classifier import (
    CLEAR_LINE,
    Sink,
    Tag,
    build_classifiers,
    flash_classifiers,
    send_to_sink,
    tagged,
)
from .process_supervisor import (
    CancelToken,
    Outcome,
    ProcessSupervisor,
    ProcessTerminator,
    default_terminator,
)

logger = logging.getLogger(__name__)

BUILD_FAILURES = {
    1: "build failed",
    2: "sketch not found",
    3: "invalid command-line option",
    4: "unknown preference",
}

# The K210 can only be flashed through kflash
KFLASH_FQBN_PREFIX = "Maixduino:k210:"

CODE_FILE_NAME = "code.ino"


def project_dir_name(fqbn: str) -> str:
    """'arduino:avr:uno:cpu=x' -> 'arduino_avr_uno'"""
    return "_".join(f"{fqbn.replace(':', '_')}_project".split("_")[:3])


class ArduinoSession:
    """
    One upload job against a (port, board profile) pair.

    Build and flash must not run concurrently on the same session. Once
    `abort()` has been called the session stays aborted: every later build or
    flash is terminated on its first abort check, so create a new session per job.
    """

    def __init__(
        self,
        peripheral_path: str,
        profile: BoardProfile | dict,
        config: UploaderConfig,
        sink: Sink,
        terminator: ProcessTerminator | None = None,
    ):
        self.peripheral_path = peripheral_path
        self.profile = profile if isinstance(profile, BoardProfile) else BoardProfile.model_validate(profile)
        self.config = config
        self.sink = sink
        self.terminator = terminator or default_terminator()
        self.token = CancelToken()

        self.fqbn = self.profile.resolve_fqbn()

        self.cli_path = config.cli_path
        self.config_file_path = config.config_file_path
        self.project_path = config.user_data_path / "arduino" / project_dir_name(self.fqbn)
        self.code_folder_path = self.project_path / "code"
        self.code_file_path = self.code_folder_path / CODE_FILE_NAME
        self.build_path = self.project_path / "build"
        self.build_cache_path = self.project_path / "buildCache"

    @property
    def aborted(self) -> bool:
        return self.token.cancelled

    def abort(self) -> None:
        """Request the running (and any later) build or flash to stop"""
        logger.info(f"Abort requested for {self.peripheral_path}")
        self.token.cancel()

    async def initialize(self) -> bool:
        """Make sure the arduino-cli config file exists and points at the bundled toolchain"""
        self.config.ensure_directories()
        cli_config = ArduinoCliConfig(self.cli_path, self.config_file_path, self.config.arduino_path)
        return await cli_config.ensure_initialized(self.sink)

    def _supervisor(self) -> ProcessSupervisor:
        return ProcessSupervisor(
            self.token,
            self.terminator,
            poll_interval=self.config.abort_poll_interval,
            chunk_size=self.config.read_chunk_size,
            drain_timeout=self.config.output_drain_timeout,
        )

    async def _fail_early(self, outcome: Outcome) -> Outcome:
        await send_to_sink(self.sink, tagged(f"{outcome.reason}\n", Tag.ERROR))
        await send_to_sink(self.sink, CLEAR_LINE)
        return outcome

    # --- Build ---

    def prepare_workspace(self, code: str) -> Path:
        """Write the sketch into the workspace, creating it if needed"""
        try:
            self.code_folder_path.mkdir(parents=True, exist_ok=True)
            self.code_file_path.write_text(code, encoding="utf-8")
        except OSError as e:
            raise WorkspaceWriteError(f"could not write sketch to {self.code_file_path}: {e}") from e
        return self.code_file_path

    def build_args(self) -> list[str]:
        args = ["compile", "--fqbn", self.fqbn]
        for lib in self.profile.library:
            if os.path.exists(lib):
                args.extend(["--libraries", lib])
            else:
                logger.debug(f"Skipping missing library path: {lib}")
        args.extend([
            "--libraries", str(self.config.arduino_path / "libraries"),
            "--warnings=none",
            "--verbose",
            "--build-path", str(self.build_path),
            "--build-cache-path", str(self.build_cache_path),
            "--config-file", str(self.config_file_path),
            str(self.code_folder_path),
        ])
        return args

    async def _build_outcome(self, code: int) -> Outcome:
        if code == 0:
            return Outcome.success()
        if self.token.cancelled:
            # A force-killed compiler still reports an exit code
            return Outcome.aborted()
        if code in BUILD_FAILURES:
            return Outcome.failed(BUILD_FAILURES[code])
        return Outcome.failed("unknown error", UnknownExitError(code))

    async def build(self, code: str) -> Outcome:
        """Compile `code` for this session's board"""
        try:
            self.prepare_workspace(code)
        except WorkspaceWriteError as e:
            logger.error(str(e))
            return await self._fail_early(Outcome.failed(str(e), e))

        await send_to_sink(self.sink, "Start building...\n")
        stdout_classifier, stderr_classifier = build_classifiers()
        outcome = await self._supervisor().run(
            self.cli_path,
            self.build_args(),
            self.sink,
            self._build_outcome,
            stdout_classifier,
            stderr_classifier,
        )
        logger.info(f"Build for {self.fqbn}: {outcome}")
        return outcome

    # --- Flash ---

    def flash_args(self, firmware_path: str | None = None) -> list[str]:
        args = [
            "upload",
            "--fqbn", self.fqbn,
            "--verbose",
            "--verify",
            "--config-file", str(self.config_file_path),
            f"-p{self.peripheral_path}",
        ]

        if self.fqbn.startswith(KFLASH_FQBN_PREFIX):
            args.append("-Pkflash")

        if firmware_path:
            args.extend(["--input-file", str(firmware_path), str(firmware_path)])
        else:
            args.extend(["--input-dir", str(self.build_path), str(self.code_folder_path)])
        return args

    async def _flash_outcome(self, code: int) -> Outcome:
        if code == 0:
            if self.profile.post_upload_delay:
                # Give the board time to re-enumerate on USB
                await asyncio.sleep(self.profile.post_upload_delay / 1000)
            return Outcome.success()
        if code == 1:
            if self.token.cancelled:
                # The OS may not have released the port yet
                await asyncio.sleep(self.config.abort_release_delay)
                return Outcome.aborted()
            return Outcome.failed("flash failed")
        return Outcome.failed("unknown error", UnknownExitError(code))

    async def flash(self, firmware_path: str | Path | None = None) -> Outcome:
        """Upload the last build, or a prebuilt firmware file when `firmware_path` is given"""
        stdout_classifier, stderr_classifier = flash_classifiers()
        outcome = await self._supervisor().run(
            self.cli_path,
            self.flash_args(firmware_path),
            self.sink,
            self._flash_outcome,
            stdout_classifier,
            stderr_classifier,
        )
        logger.info(f"Flash to {self.peripheral_path}: {outcome}")
        return outcome

    async def flash_realtime_firmware(self) -> Outcome:
        """Flash the profile's prebuilt realtime firmware from the firmware directory"""
        if not self.profile.firmware:
            error = BoardProfileError(f"No realtime firmware configured for {self.fqbn}")
            return await self._fail_early(Outcome.failed(str(error), error))
        return await self.flash(self.config.firmware_dir / self.profile.firmware)
