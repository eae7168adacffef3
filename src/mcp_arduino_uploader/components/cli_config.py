"""arduino-cli config bootstrap: point the CLI at the bundled Arduino directory"""

import asyncio
import logging
from pathlib import Path

import yaml

from .output_classifier import (
    ANSI_GREEN_DARK,
    ANSI_YELLOW_DARK,
    Sink,
    Tag,
    send_to_sink,
    tagged,
)

logger = logging.getLogger(__name__)


class ArduinoCliConfig:
    """Idempotent initialization of a session-scoped arduino-cli.yaml"""

    def __init__(self, cli_path: str, config_file: Path, arduino_path: Path):
        self.cli_path = cli_path
        self.config_file = Path(config_file)
        self.arduino_path = Path(arduino_path)

    async def _run_cli(self, args: list[str]) -> tuple[str, str, int]:
        process = await asyncio.create_subprocess_exec(
            self.cli_path,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        stdout_str = stdout.decode(errors='replace') if stdout else ""
        stderr_str = stderr.decode(errors='replace') if stderr else ""
        logger.debug(f"arduino-cli {' '.join(args)} -> {process.returncode}")
        return stdout_str, stderr_str, process.returncode

    async def _set(self, key: str, value: Path) -> None:
        await self._run_cli(["config", "set", key, str(value), "--config-file", str(self.config_file)])

    async def ensure_initialized(self, sink: Sink) -> bool:
        """
        Create the config file if needed and make sure its directories point at
        the bundled Arduino path. Problems are reported to the sink, never raised.

        Returns True when the config is usable.
        """
        try:
            # Fails harmlessly when the file already exists
            await self._run_cli(["config", "init", "--dest-file", str(self.config_file)])

            stdout, stderr, code = await self._run_cli(
                ["config", "dump", "--config-file", str(self.config_file)]
            )
            if code != 0:
                raise RuntimeError(stderr.strip() or f"config dump exited with code {code}")

            dump = yaml.safe_load(stdout) or {}
            data_dir = (dump.get("directories") or {}).get("data")

            if data_dir != str(self.arduino_path):
                await send_to_sink(sink, f"{ANSI_YELLOW_DARK}arduino cli config has not been initialized yet.\n")
                await send_to_sink(sink, f"{ANSI_GREEN_DARK}set the path to {self.arduino_path}.\n")
                await self._set("directories.data", self.arduino_path)
                await self._set("directories.downloads", self.arduino_path / "staging")
                await self._set("directories.user", self.arduino_path)
                logger.info(f"Configured arduino-cli directories under {self.arduino_path}")

            return True

        except (OSError, RuntimeError, yaml.YAMLError, AttributeError) as e:
            logger.error(f"arduino-cli config bootstrap failed: {e}")
            await send_to_sink(sink, tagged(f"arduino cli init error:{e}\n", Tag.ERROR))
            return False
