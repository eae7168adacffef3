"""
Pytest configuration and fixtures for mcp-arduino-uploader tests
"""
import json
import stat
import sys
import tempfile
from pathlib import Path
from typing import Generator, List
from unittest.mock import AsyncMock, Mock

import pytest
from fastmcp import Context

from mcp_arduino_uploader.components import ArduinoSession, ArduinoUpload
from mcp_arduino_uploader.config import BoardProfile, UploaderConfig

# Stand-in for arduino-cli: records its argv, echoes canned output and exits
# with a configurable code. `config ...` subcommands never sleep.
STUB_TOOLCHAIN = """#!{python}
import json, os, sys, time
with open(os.environ["STUB_ARGS_FILE"], "a") as f:
    f.write(json.dumps(sys.argv[1:]) + "\\n")
sys.stdout.write(os.environ.get("STUB_STDOUT", ""))
sys.stdout.flush()
sys.stderr.write(os.environ.get("STUB_STDERR", ""))
sys.stderr.flush()
if sys.argv[1:2] != ["config"]:
    time.sleep(float(os.environ.get("STUB_SLEEP", "0")))
sys.exit(int(os.environ.get("STUB_EXIT_CODE", "0")))
"""

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="stub toolchain is a shebang script")


class RecordingSink:
    """Sink that keeps every chunk it receives"""

    def __init__(self):
        self.chunks: List[str] = []

    def __call__(self, text: str) -> None:
        self.chunks.append(text)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


class StubToolchain:
    """Handle for configuring the stub arduino-cli and reading back its calls"""

    def __init__(self, path: Path, args_file: Path, monkeypatch):
        self.path = path
        self.args_file = args_file
        self._monkeypatch = monkeypatch
        monkeypatch.setenv("STUB_ARGS_FILE", str(args_file))
        self.configure()

    def configure(self, exit_code: int = 0, stdout: str = "", stderr: str = "", sleep: float = 0) -> None:
        self._monkeypatch.setenv("STUB_EXIT_CODE", str(exit_code))
        self._monkeypatch.setenv("STUB_STDOUT", stdout)
        self._monkeypatch.setenv("STUB_STDERR", stderr)
        self._monkeypatch.setenv("STUB_SLEEP", str(sleep))

    def calls(self) -> List[List[str]]:
        if not self.args_file.exists():
            return []
        return [json.loads(line) for line in self.args_file.read_text().splitlines()]

    def subcommands(self) -> List[str]:
        return [call[0] for call in self.calls() if call and call[0] != "config"]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> UploaderConfig:
    """Create a test configuration with temporary directories"""
    config = UploaderConfig(
        tools_path=temp_dir / "tools",
        user_data_path=temp_dir / "data",
    )
    config.ensure_directories()
    return config


@pytest.fixture
def board_profile() -> BoardProfile:
    return BoardProfile(fqbn="arduino:avr:uno")


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def session(test_config: UploaderConfig, board_profile: BoardProfile, sink: RecordingSink) -> ArduinoSession:
    """Create an ArduinoSession against a fake port"""
    return ArduinoSession("/dev/ttyUSB0", board_profile, test_config, sink)


@pytest.fixture
def stub_cli(test_config: UploaderConfig, temp_dir: Path, monkeypatch) -> StubToolchain:
    """Install the stub toolchain where the config expects arduino-cli"""
    cli_path = Path(test_config.cli_path)
    cli_path.parent.mkdir(parents=True, exist_ok=True)
    cli_path.write_text(STUB_TOOLCHAIN.format(python=sys.executable))
    cli_path.chmod(cli_path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return StubToolchain(cli_path, temp_dir / "calls.jsonl", monkeypatch)


@pytest.fixture
def test_context():
    """Create a test context that records log calls"""
    ctx = Mock(spec=Context)
    ctx.report_progress = AsyncMock()
    ctx.info = AsyncMock()
    ctx.debug = AsyncMock()
    ctx.warning = AsyncMock()
    ctx.error = AsyncMock()
    return ctx


@pytest.fixture
def upload_component(test_config: UploaderConfig) -> ArduinoUpload:
    """Create ArduinoUpload component instance"""
    return ArduinoUpload(test_config)


@pytest.fixture
def sample_sketch_content() -> str:
    """Sample Arduino sketch code"""
    return """// Blink LED
void setup() {
    pinMode(LED_BUILTIN, OUTPUT);
}

void loop() {
    digitalWrite(LED_BUILTIN, HIGH);
    delay(1000);
    digitalWrite(LED_BUILTIN, LOW);
    delay(1000);
}
"""


def assert_logged_info(ctx: Mock, message_fragment: str):
    """Assert that an info message containing the fragment was logged"""
    for call in ctx.info.call_args_list:
        if message_fragment in str(call):
            return
    raise AssertionError(f"No info message containing '{message_fragment}' was logged")
