"""Custom exceptions for the catalog retrieval pipeline."""

from typing import Dict, Any, List, Optional


class RetrievalError(Exception):
    """Base exception for catalog retrieval pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class QueryValidationError(RetrievalError):
    """Raised when query validation fails."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(message)
        self.query = query
        self.details = {"query": query}


class EmbeddingProviderError(RetrievalError):
    """Raised when the embedding provider fails. Always a hard failure."""

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code
        self.details = {
            "provider": provider,
            "model": model,
            "status_code": status_code
        }


class SearchError(RetrievalError):
    """Raised when the catalog vector search fails. Always a hard failure."""

    def __init__(self, message: str, search_params: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        super().__init__(message)
        self.search_params = search_params or {}
        self.error_code = error_code
        self.details = {
            "search_params": self.search_params,
            "error_code": error_code
        }


class AttributeExtractionError(RetrievalError):
    """Raised by attribute extractors; the service degrades to empty attributes."""

    def __init__(self, message: str, model: Optional[str] = None, raw_output: Optional[str] = None):
        super().__init__(message)
        self.model = model
        self.raw_output = raw_output
        self.details = {
            "model": model,
            "raw_output": raw_output
        }


class RerankError(RetrievalError):
    """Raised by rerankers; the blend falls back to the rescored ranking."""

    def __init__(self, message: str, model: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.model = model
        self.status_code = status_code
        self.details = {
            "model": model,
            "status_code": status_code
        }


class ConfigurationError(RetrievalError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, missing_keys: Optional[List[str]] = None, invalid_values: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.missing_keys = missing_keys or []
        self.invalid_values = invalid_values or {}
        self.details = {
            "missing_keys": self.missing_keys,
            "invalid_values": self.invalid_values
        }
