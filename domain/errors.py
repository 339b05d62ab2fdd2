"""Typed failures raised by the evaluation pipeline and its collaborators.

Every error carries a stable ``code`` that ends up in the job's error record.
"""
from typing import List, Optional

import httpx


class EvaluationError(Exception):
    code = "UNKNOWN_ERROR"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DocumentValidationError(EvaluationError):
    code = "VALIDATION_ERROR"


class DocumentNotFoundError(DocumentValidationError):
    code = "DOCUMENT_NOT_FOUND"


class SecurityBlockedError(EvaluationError):
    code = "SECURITY_BLOCKED"

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = list(reasons or [])


class TransientProviderError(EvaluationError):
    code = "PROVIDER_UNAVAILABLE"
    retryable = True


class ProviderNotConfiguredError(EvaluationError):
    code = "PROVIDER_NOT_CONFIGURED"


class ProviderResponseError(EvaluationError):
    """Provider answered with a payload that does not match its documented shape."""
    code = "PROVIDER_RESPONSE_INVALID"


class SchemaInvalidError(EvaluationError):
    """Model output was empty, not JSON, or failed schema validation."""
    code = "SCHEMA_INVALID"


class StageFailure(EvaluationError):
    def __init__(self, stage: str, cause: BaseException):
        super().__init__(str(cause) or cause.__class__.__name__)
        self.stage = stage
        self.cause = cause
        self.code = error_code_for(cause)


def error_code_for(exc: BaseException) -> str:
    if isinstance(exc, EvaluationError):
        return exc.code
    if isinstance(exc, httpx.HTTPError):
        return "PROVIDER_ERROR"
    return EvaluationError.code
