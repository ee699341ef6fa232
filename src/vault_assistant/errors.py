class VaultAssistantError(Exception):
    """Base error. ``recoverable`` tells callers whether a retry can help."""

    code = "vault_error"
    recoverable = False

    def __init__(self, message: str, *, recoverable: bool | None = None) -> None:
        super().__init__(message)
        self.message = message
        if recoverable is not None:
            self.recoverable = recoverable


class InitializationError(VaultAssistantError):
    code = "initialization_error"


class EmbeddingError(VaultAssistantError):
    code = "embedding_error"


class ConfigurationError(VaultAssistantError):
    code = "configuration_error"


class PrivacyViolationError(VaultAssistantError):
    code = "privacy_violation"

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class LLMError(VaultAssistantError):
    code = "llm_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        recoverable: bool | None = None,
    ) -> None:
        super().__init__(message, recoverable=recoverable)
        self.status_code = status_code


class RateLimitError(LLMError):
    code = "rate_limited"
    recoverable = True

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class TransientServiceError(LLMError):
    code = "transient_service_error"
    recoverable = True


class SafetyRejection(LLMError):
    code = "safety_rejection"


class InvalidRequestError(LLMError):
    code = "invalid_request"


class LLMConfigurationError(LLMError, ConfigurationError):
    """Authentication or permission failure reported by the model service."""

    code = "configuration_error"
