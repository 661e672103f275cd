"""Custom exceptions for the live transcription service."""

from typing import Optional


class TranscriberError(Exception):
    """Base exception for the transcription service."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message


class ConfigurationError(TranscriberError):
    """Raised at start-up when required credentials or endpoints are missing."""


class RoomJoinError(TranscriberError):
    """Raised when the bot cannot connect to a room after all retry attempts."""

    def __init__(self, room_id: str, attempts: int, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to join room {room_id} after {attempts} attempts", cause)
        self.room_id = room_id
        self.attempts = attempts


class TranscriptionConnectError(TranscriberError):
    """Raised when a streaming transcription session cannot be opened."""

    def __init__(self, participant_id: str, cause: Optional[BaseException] = None):
        super().__init__(f"Failed to open transcription stream for {participant_id}", cause)
        self.participant_id = participant_id


class SessionStoreError(TranscriberError):
    """Raised when the settings/accounting store cannot serve a request."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(f"Session store {operation} failed", cause)
        self.operation = operation
