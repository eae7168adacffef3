"""Arduino upload MCP component: build, flash and abort exposed as tools"""
import logging
from typing import Any, Dict, List, Optional

from fastmcp import Context
from fastmcp.contrib.mcp_mixin import MCPMixin, mcp_tool
from mcp.types import ToolAnnotations
from pydantic import ValidationError

from ..config import UploaderConfig
from ..errors import BoardProfileError
from .arduino_session import ArduinoSession
from .output_classifier import strip_ansi
from .process_supervisor import Outcome

log = logging.getLogger(__name__)


class ArduinoUpload(MCPMixin):
    """Arduino build/flash component with one upload session per port"""

    def __init__(self, config: UploaderConfig):
        """Initialize Arduino upload mixin with configuration"""
        self.config = config
        self.sessions: Dict[str, ArduinoSession] = {}
        self._running: set[str] = set()

    def _new_session(
        self,
        ctx: Context | None,
        port: str,
        board_profile: Dict[str, Any],
        output: List[str],
    ) -> ArduinoSession:
        async def sink(text: str) -> None:
            output.append(text)
            message = strip_ansi(text).strip()
            if ctx and message:
                await ctx.info(message)

        session = ArduinoSession(port, board_profile, self.config, sink)
        self.sessions[port] = session
        return session

    @staticmethod
    def _result(outcome: Outcome, output: List[str], **extra: Any) -> Dict[str, Any]:
        result = {
            "success": outcome.ok,
            "status": outcome.status.value,
            "output": strip_ansi("".join(output)),
            **extra,
        }
        if outcome.reason:
            result["error"] = outcome.reason
        return result

    async def _run_job(self, ctx, port, board_profile, job) -> Dict[str, Any]:
        if port in self._running:
            return {"error": f"An upload is already running on '{port}'"}

        output: List[str] = []
        self._running.add(port)
        try:
            session = self._new_session(ctx, port, board_profile, output)
            await session.initialize()
            return await job(session, output)
        except (BoardProfileError, ValidationError) as e:
            log.warning(f"Invalid board profile for {port}: {e}")
            return {"error": f"Invalid board profile: {e}"}
        except Exception as e:
            log.exception(f"Upload job on {port} failed: {e}")
            return {"error": str(e)}
        finally:
            self._running.discard(port)

    @mcp_tool(
        name="arduino_upload_code",
        description="Compile Arduino source code and flash it to the board on a serial port",
        annotations=ToolAnnotations(
            title="Build and Upload Code",
            destructiveHint=True,
            idempotentHint=False,
        )
    )
    async def upload_code(
        self,
        ctx: Context | None,
        port: str,
        board_profile: Dict[str, Any],
        code: str
    ) -> Dict[str, Any]:
        """Build `code` for the board profile, then flash it if the build succeeded"""

        async def job(session: ArduinoSession, output: List[str]) -> Dict[str, Any]:
            outcome = await session.build(code)
            if not outcome.ok:
                return self._result(outcome, output, stage="build")
            outcome = await session.flash()
            return self._result(outcome, output, stage="flash", port=port)

        return await self._run_job(ctx, port, board_profile, job)

    @mcp_tool(
        name="arduino_flash_firmware",
        description="Flash a prebuilt firmware file (or the last build) to the board on a serial port",
        annotations=ToolAnnotations(
            title="Flash Firmware",
            destructiveHint=True,
            idempotentHint=False,
        )
    )
    async def flash_firmware(
        self,
        ctx: Context | None,
        port: str,
        board_profile: Dict[str, Any],
        firmware_path: Optional[str] = None
    ) -> Dict[str, Any]:
        """Flash a firmware file, or the session's last build when no path is given"""

        async def job(session: ArduinoSession, output: List[str]) -> Dict[str, Any]:
            outcome = await session.flash(firmware_path)
            return self._result(outcome, output, stage="flash", port=port)

        return await self._run_job(ctx, port, board_profile, job)

    @mcp_tool(
        name="arduino_flash_realtime_firmware",
        description="Flash the board profile's bundled realtime firmware",
        annotations=ToolAnnotations(
            title="Flash Realtime Firmware",
            destructiveHint=True,
            idempotentHint=False,
        )
    )
    async def flash_realtime_firmware(
        self,
        ctx: Context | None,
        port: str,
        board_profile: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Flash the realtime firmware named in the board profile"""

        async def job(session: ArduinoSession, output: List[str]) -> Dict[str, Any]:
            outcome = await session.flash_realtime_firmware()
            return self._result(outcome, output, stage="flash", port=port)

        return await self._run_job(ctx, port, board_profile, job)

    @mcp_tool(
        name="arduino_abort_upload",
        description="Abort the build or flash running on a serial port",
        annotations=ToolAnnotations(
            title="Abort Upload",
            destructiveHint=False,
            idempotentHint=True,
        )
    )
    async def abort_upload(
        self,
        ctx: Context | None,
        port: str
    ) -> Dict[str, Any]:
        """Abort the session on `port`; the running tool is stopped within one poll interval"""
        session = self.sessions.get(port)
        if session is None:
            return {"error": f"No upload session for '{port}'"}

        session.abort()
        return {
            "success": True,
            "message": f"Abort requested for '{port}'",
            "running": port in self._running,
        }
