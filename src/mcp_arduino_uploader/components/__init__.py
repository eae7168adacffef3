"""Arduino Uploader Components"""
from .arduino_session import ArduinoSession
from .arduino_upload import ArduinoUpload
from .cli_config import ArduinoCliConfig
from .output_classifier import Span, Tag
from .process_supervisor import (
    CancelToken,
    Outcome,
    OutcomeStatus,
    ProcessSupervisor,
    ProcessTreeTerminator,
    SignalTerminator,
)

__all__ = [
    "ArduinoSession",
    "ArduinoUpload",
    "ArduinoCliConfig",
    "CancelToken",
    "Outcome",
    "OutcomeStatus",
    "ProcessSupervisor",
    "ProcessTreeTerminator",
    "SignalTerminator",
    "Span",
    "Tag",
]
