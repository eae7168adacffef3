"""Error types raised or carried by upload operations"""


class UploaderError(Exception):
    """Base class for all uploader errors"""


class WorkspaceWriteError(UploaderError):
    """The sketch workspace could not be prepared before spawning the toolchain"""


class BoardProfileError(UploaderError, ValueError):
    """The board profile cannot be resolved for this host"""


class ToolInvocationError(UploaderError):
    """The toolchain exited with a code that maps to a known failure"""

    def __init__(self, reason: str, exit_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.exit_code = exit_code


class ToolSpawnError(ToolInvocationError):
    """The toolchain executable could not be started"""


class UnknownExitError(ToolInvocationError):
    """The toolchain exited with a code outside the operation's exit table"""

    def __init__(self, exit_code: int):
        super().__init__("unknown error", exit_code)
