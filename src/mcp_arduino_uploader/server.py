"""
Arduino Uploader MCP server

Composes the upload component into a FastMCP server so a host can build,
flash and abort uploads over stdio.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from fastmcp import FastMCP

from .components import ArduinoUpload
from .config import UploaderConfig

log = logging.getLogger(__name__)


def create_server(config: Optional[UploaderConfig] = None) -> FastMCP:
    """Factory function to create the Arduino uploader MCP server"""
    if config is None:
        config = UploaderConfig()

    config.ensure_directories()

    mcp = FastMCP(
        name="Arduino Uploader"
    )

    upload = ArduinoUpload(config)
    upload.register_all(mcp)

    @mcp.tool(name="arduino_show_uploader_config")
    async def show_config() -> Dict[str, Any]:
        """Show the toolchain and data directories used for uploads"""
        return {
            "arduino_cli": config.cli_path,
            "config_file": str(config.config_file_path),
            "user_data": str(config.user_data_path),
            "firmware_dir": str(config.firmware_dir),
            "active_ports": sorted(upload.sessions),
        }

    log.info(f"🚀 Arduino Uploader initialized")
    log.info(f"🔧 Arduino CLI: {config.cli_path}")
    log.info(f"📁 User data: {config.user_data_path}")

    return mcp


def main():
    """Main entry point for the uploader server"""
    config = UploaderConfig()

    config.log_level = os.environ.get("LOG_LEVEL", config.log_level)
    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(asctime)s - %(levelname)-8s - %(name)-18s - [%(funcName)s:%(lineno)d] %(message)s'
    )

    if env_tools_path := os.getenv("ARDUINO_TOOLS_PATH"):
        config.tools_path = Path(env_tools_path).expanduser()
        log.info(f"Using ARDUINO_TOOLS_PATH: {config.tools_path}")

    if env_data_path := os.getenv("ARDUINO_USER_DATA_PATH"):
        config.user_data_path = Path(env_data_path).expanduser()
        log.info(f"Using ARDUINO_USER_DATA_PATH: {config.user_data_path}")

    if env_cli_path := os.getenv("ARDUINO_CLI_PATH"):
        config.arduino_cli_path = env_cli_path
        log.info(f"Using ARDUINO_CLI_PATH: {config.arduino_cli_path}")

    mcp = create_server(config)

    try:
        mcp.run(transport='stdio')
    except KeyboardInterrupt:
        log.info("Server stopped by user")
    except Exception as e:
        log.exception(f"Server error: {e}")
        raise


if __name__ == "__main__":
    main()
