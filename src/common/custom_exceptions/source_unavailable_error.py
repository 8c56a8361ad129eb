from typing import Optional

# Custom Exceptions
class SourceUnavailableError(Exception):
    """Raised when an upstream token source can't be reached or returns garbage."""

    def __init__(self, message: str = "Token source unavailable", detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)

    def __str__(self) -> str:
        if self.detail:
            return f"{self.message}: {self.detail}"
        return self.message
