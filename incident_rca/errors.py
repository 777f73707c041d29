"""
Incident RCA - Errors Module
=============================

Named errors raised by the pipeline.

Every error carries an HTTP status code and an internal code so the web layer
that calls ``run_rca`` can translate it without inspecting messages.
"""

import traceback
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    ORGANIZATION_NOT_FOUND = "ORGANIZATION_NOT_FOUND"
    KNOWLEDGE_BASE_NOT_SET_UP = "KNOWLEDGE_BASE_NOT_SET_UP"
    NO_INTEGRATION = "NO_INTEGRATION"
    INTEGRATION_NOT_FOUND = "INTEGRATION_NOT_FOUND"
    UNSUPPORTED_EVENT_SOURCE = "UNSUPPORTED_EVENT_SOURCE"
    UNSUPPORTED_INDEX_TYPE = "UNSUPPORTED_INDEX_TYPE"
    QUERY_GENERATION_FAILED = "QUERY_GENERATION_FAILED"
    DOCUMENT_VERIFICATION_FAILED = "DOCUMENT_VERIFICATION_FAILED"
    LOG_STRUCTURE_KEYS_MISSING = "LOG_STRUCTURE_KEYS_MISSING"
    LOG_CLUSTERING_FAILED = "LOG_CLUSTERING_FAILED"
    UNKNOWN_LOG_VENDOR = "UNKNOWN_LOG_VENDOR"


class AppError(Exception):
    """Base error with an HTTP status and an internal code."""

    status_code = 500
    internal_code: Optional[ErrorCode] = None

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        internal_code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if internal_code is not None:
            self.internal_code = internal_code

    @property
    def status(self) -> str:
        return "fail" if 400 <= self.status_code < 500 else "error"


# --- Configuration errors (fatal, no retry) ---

class OrganizationNotFoundError(AppError):
    status_code = 404
    internal_code = ErrorCode.ORGANIZATION_NOT_FOUND

    def __init__(self, message: str = "Organization not found"):
        super().__init__(message)


class KnowledgeBaseNotSetUpError(AppError):
    status_code = 400
    internal_code = ErrorCode.KNOWLEDGE_BASE_NOT_SET_UP

    def __init__(
        self,
        message: str = "Knowledge base is not set up. Analysis cannot be done.",
    ):
        super().__init__(message)


class NoIntegrationsError(AppError):
    status_code = 404
    internal_code = ErrorCode.NO_INTEGRATION

    def __init__(self, message: str = "No integrations found"):
        super().__init__(message)


class IntegrationNotFoundError(AppError):
    status_code = 404
    internal_code = ErrorCode.INTEGRATION_NOT_FOUND


class UnsupportedEventSourceError(AppError):
    status_code = 400
    internal_code = ErrorCode.UNSUPPORTED_EVENT_SOURCE


class UnsupportedIndexTypeError(AppError):
    status_code = 400
    internal_code = ErrorCode.UNSUPPORTED_INDEX_TYPE


# --- Generation / parsing errors (fatal to the run) ---

class QueryGenerationError(AppError):
    internal_code = ErrorCode.QUERY_GENERATION_FAILED


class DocumentVerificationError(AppError):
    internal_code = ErrorCode.DOCUMENT_VERIFICATION_FAILED


# --- Log analysis errors (recovered by the raw-log fallback) ---

class LogStructureKeysError(AppError):
    internal_code = ErrorCode.LOG_STRUCTURE_KEYS_MISSING


class LogClusteringError(AppError):
    status_code = 502
    internal_code = ErrorCode.LOG_CLUSTERING_FAILED


class UnknownLogVendorError(AppError):
    status_code = 400
    internal_code = ErrorCode.UNKNOWN_LOG_VENDOR


def error_payload(error: AppError, debug: bool = False) -> dict:
    """
    Build the response body for an ``AppError``.

    The lean shape is meant for production; ``debug`` adds the stack trace.
    """
    payload = {
        "status": error.status,
        "message": error.message,
        "code": error.internal_code.value if error.internal_code else None,
    }
    if debug:
        payload["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
    return payload
