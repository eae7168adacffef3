"""
Tests for the ArduinoUpload MCP component
"""
import asyncio

import pytest

from tests.conftest import assert_logged_info, posix_only

PORT = "/dev/ttyUSB0"
PROFILE = {"fqbn": "arduino:avr:uno"}


@posix_only
class TestArduinoUpload:
    """Test suite for ArduinoUpload component"""

    @pytest.mark.asyncio
    async def test_upload_code_builds_then_flashes(self, upload_component, test_context, stub_cli, sample_sketch_content):
        stub_cli.configure(exit_code=0, stdout="Sketch uses 924 bytes (2%) of program storage space.\n")

        result = await upload_component.upload_code(test_context, PORT, PROFILE, sample_sketch_content)

        assert result["success"] is True
        assert result["status"] == "success"
        assert result["stage"] == "flash"
        assert "Start building..." in result["output"]
        assert "\x1b[" not in result["output"]
        assert stub_cli.subcommands() == ["compile", "upload"]
        assert_logged_info(test_context, "Sketch uses 924 bytes")

    @pytest.mark.asyncio
    async def test_build_failure_skips_flash(self, upload_component, test_context, stub_cli, sample_sketch_content):
        stub_cli.configure(exit_code=1, stderr="code.ino:1:1: error: 'foo' does not name a type\n")

        result = await upload_component.upload_code(test_context, PORT, PROFILE, sample_sketch_content)

        assert result["success"] is False
        assert result["status"] == "failed"
        assert result["stage"] == "build"
        assert result["error"] == "build failed"
        assert stub_cli.subcommands() == ["compile"]

    @pytest.mark.asyncio
    async def test_flash_firmware(self, upload_component, test_context, stub_cli, temp_dir):
        firmware = temp_dir / "blink.hex"
        firmware.write_text(":00000001FF\n")

        result = await upload_component.flash_firmware(test_context, PORT, PROFILE, str(firmware))

        assert result["success"] is True
        upload_call = [call for call in stub_cli.calls() if call[0] == "upload"][0]
        assert upload_call[-3:] == ["--input-file", str(firmware), str(firmware)]

    @pytest.mark.asyncio
    async def test_flash_realtime_firmware_without_firmware(self, upload_component, test_context, stub_cli):
        result = await upload_component.flash_realtime_firmware(test_context, PORT, PROFILE)

        assert result["success"] is False
        assert "No realtime firmware configured" in result["error"]
        assert stub_cli.subcommands() == []

    @pytest.mark.asyncio
    async def test_abort_running_upload(self, upload_component, test_context, stub_cli, sample_sketch_content):
        stub_cli.configure(exit_code=0, sleep=30)

        task = asyncio.create_task(
            upload_component.upload_code(test_context, PORT, PROFILE, sample_sketch_content)
        )
        for _ in range(100):
            if "compile" in stub_cli.subcommands():
                break
            await asyncio.sleep(0.05)

        abort_result = await upload_component.abort_upload(test_context, PORT)
        result = await asyncio.wait_for(task, timeout=10)

        assert abort_result["success"] is True
        assert abort_result["running"] is True
        assert result["status"] == "aborted"
        assert result["stage"] == "build"
        assert "error" not in result
        assert stub_cli.subcommands() == ["compile"]

    @pytest.mark.asyncio
    async def test_new_job_gets_fresh_session_after_abort(self, upload_component, test_context, stub_cli, sample_sketch_content):
        await upload_component.flash_firmware(test_context, PORT, PROFILE)
        await upload_component.abort_upload(test_context, PORT)

        result = await upload_component.upload_code(test_context, PORT, PROFILE, sample_sketch_content)

        assert result["success"] is True


class TestArduinoUploadErrors:

    @pytest.mark.asyncio
    async def test_abort_unknown_port(self, upload_component, test_context):
        result = await upload_component.abort_upload(test_context, "/dev/ttyNOPE")

        assert "error" in result
        assert "No upload session" in result["error"]

    @pytest.mark.asyncio
    async def test_invalid_board_profile(self, upload_component, test_context):
        result = await upload_component.flash_firmware(test_context, PORT, {"library": []})

        assert "Invalid board profile" in result["error"]

    @pytest.mark.asyncio
    async def test_platform_missing_from_fqbn_map(self, upload_component, test_context):
        result = await upload_component.flash_firmware(test_context, PORT, {"fqbn": {"nonexistent-os": "a:b:c"}})

        assert "Invalid board profile" in result["error"]

    @pytest.mark.asyncio
    async def test_busy_port_is_rejected(self, upload_component, test_context):
        upload_component._running.add(PORT)

        result = await upload_component.upload_code(test_context, PORT, PROFILE, "void setup(){} void loop(){}")

        assert "already running" in result["error"]
