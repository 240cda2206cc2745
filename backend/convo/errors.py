class StartValidationError(ValueError):
    """bad input to a conversation start; nothing about the session changes"""


class CapabilityFailure(RuntimeError):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message

    def __str__(self) -> str:
        return f"{self.message} (status {self.status})"


class GenerationFailure(CapabilityFailure):
    pass


class SpeechFailure(CapabilityFailure):
    pass


class StorageFailure(RuntimeError):
    pass


class InvalidConversationId(ValueError):
    pass


class SharedNotFound(LookupError):
    pass


class ShareExpired(LookupError):
    pass
