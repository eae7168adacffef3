"""Drive arduino-cli to build and flash Arduino boards with streamed, color-tagged output"""
from .components import ArduinoSession, CancelToken, Outcome, OutcomeStatus, Tag
from .config import BoardProfile, UploaderConfig

__all__ = [
    "ArduinoSession",
    "BoardProfile",
    "CancelToken",
    "Outcome",
    "OutcomeStatus",
    "Tag",
    "UploaderConfig",
]
