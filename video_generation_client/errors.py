from typing import Optional


class GenerationError(Exception):
    """Base class for every terminal failure of a generation job"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CredentialError(GenerationError):
    pass


class SubmissionError(GenerationError):
    def __init__(self, message: str, attempts: int = 1):
        self.attempts = attempts
        super().__init__(message)


class PollError(GenerationError):
    pass


class GenerationTimeoutError(GenerationError, TimeoutError):
    pass


class RetrievalError(GenerationError):
    pass


class ProviderHTTPError(Exception):
    """Raised by the API layer when the provider answers with a non-2xx status"""

    def __init__(self, status: int, body: Optional[str] = None):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body}")


class MalformedResponseError(Exception):
    """Raised by the API layer when a 2xx body cannot be decoded as JSON"""
