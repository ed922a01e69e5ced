"""
Custom exceptions for SceneCast
"""

__all__ = [
    "SceneCastError",
    "ConfigurationError",
    "ProviderError",
    "RateLimitError",
    "EmptyResponseError",
    "ValidationError",
]


class SceneCastError(Exception):
    """Base exception for all SceneCast errors"""
    pass


class ConfigurationError(SceneCastError):
    """Configuration error"""
    pass


class ProviderError(SceneCastError):
    """Hard failure of the description provider (network, HTTP, bad payload)"""
    pass


class RateLimitError(ProviderError):
    """Provider refused the request because of its rate limit"""

    def __init__(self, message: str = "rate limit exceeded", retry_after: float = None):
        super().__init__(message)
        self.retry_after = retry_after


class EmptyResponseError(ProviderError):
    """Provider answered without any text"""
    pass


class ValidationError(SceneCastError):
    """Malformed scene payload"""
    pass
