class PanelgradeError(Exception):
    """Base exception for Panelgrade service."""


class ProviderError(PanelgradeError):
    """Raised when a call to an LLM provider fails."""


class TransportError(ProviderError):
    """Raised on network failures (connect error, timeout, broken stream)."""


class ProviderHTTPError(ProviderError):
    """Raised when a provider answers with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"Provider returned HTTP {status_code}: {message}")

    @property
    def retryable(self) -> bool:
        return self.status_code == 429 or self.status_code >= 500


class ResponseShapeError(ProviderError):
    """Raised when the provider envelope lacks the generated text."""


class MalformedResponseError(PanelgradeError):
    """Raised when no parseable JSON object is found in model output."""


class MissingCredentialError(PanelgradeError):
    """Raised when no provider API key is configured."""


class ValidationError(PanelgradeError):
    """Raised when a required request field is missing or invalid."""


class PayloadTooLargeError(PanelgradeError):
    """Raised when an upload exceeds the configured size limit."""


class StageError(PanelgradeError):
    """Base for stage-named failures. The message is user-facing."""


class StructureAnalysisError(StageError):
    """Raised when the structure pre-analysis stage fails."""


class EvaluatorError(StageError):
    """Raised when one rater's evaluation fails."""

    def __init__(self, evaluator_id: str, message: str) -> None:
        self.evaluator_id = evaluator_id
        super().__init__(message)


class AggregationError(StageError):
    """Raised when the comprehensive aggregation stage fails."""


class ModelAnswerError(StageError):
    """Raised when model-answer generation fails."""


class OCRError(StageError):
    """Raised when page OCR fails."""
