"""ImpactLedger Exception Hierarchy.

Exception Hierarchy:
    ImpactLedgerException (base)
    ├── EngineException
    │   ├── ValidationError          422
    │   └── ConfigurationError       500
    ├── ExternalSourceError          502, caught by stage 3 of the resolver
    └── DataException
        ├── MissingData              404
        └── DataAccessError          503, retriable

A factor that cannot be resolved is NOT an exception: the resolver returns
``None`` and readiness reports list the material as missing.

Every exception carries:
- error_code: derived from the class name unless given
- component: engine component that raised it
- context: error-specific details, including the cause when there is one
- http_status: status the REST layer answers with
- retriable: whether repeating the failed operation may succeed

Example:
    >>> from impactledger.exceptions import ValidationError
    >>> raise ValidationError(
    ...     message="Product volume cannot exceed total facility volume",
    ...     component="FacilityImpactAllocator",
    ...     context={"product_volume": 120, "total_volume": 100}
    ... )

Author: ImpactLedger Engine Team
Date: October 2026
Status: Production Ready
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json
import re


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


# ==============================================================================
# Base Exception
# ==============================================================================

class ImpactLedgerException(Exception):
    """Base exception for all ImpactLedger errors.

    Attributes:
        message: Human-readable error message
        error_code: Identifier such as "IL_ENGINE_VALIDATION_ERROR"
        component: Engine component that raised the error (optional)
        context: Error-specific details
        timestamp: UTC time the error was raised
        retriable: Whether the failed operation may succeed when repeated
    """

    ERROR_PREFIX = "IL"
    http_status = 500
    retriable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.component = component
        self.context = dict(context or {})
        if cause is not None:
            self.context["cause"] = str(cause)
            self.context["cause_type"] = type(cause).__name__
        self.error_code = error_code or (
            f"{self.ERROR_PREFIX}_{_CAMEL_BOUNDARY.sub('_', type(self).__name__).upper()}"
        )
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "component": self.component,
            "context": self.context,
            "retriable": self.retriable,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __str__(self) -> str:
        where = f" ({self.component})" if self.component else ""
        return f"[{self.error_code}]{where} {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code!r})"


# ==============================================================================
# Engine Exceptions
# ==============================================================================

class EngineException(ImpactLedgerException):
    """Base exception for calculation engine errors."""
    ERROR_PREFIX = "IL_ENGINE"


class ValidationError(EngineException):
    """Calculation inputs are invalid.

    Raised before any arithmetic, for example for a product volume larger
    than its facility's total volume.
    """
    http_status = 422

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        invalid_fields: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            message: Error message
            component: Name of component
            context: Error context
            invalid_fields: Dictionary of field_name -> reason
        """
        self.invalid_fields = dict(invalid_fields or {})
        context = dict(context or {})
        if self.invalid_fields:
            context["invalid_fields"] = self.invalid_fields
        super().__init__(message, component=component, context=context)


class ConfigurationError(EngineException):
    """Engine configuration is invalid."""


# ==============================================================================
# External Source Exceptions
# ==============================================================================

class ExternalSourceError(ImpactLedgerException):
    """The external LCA source failed, timed out or answered malformed data.

    Stage 3 of the resolver catches this and degrades to the deterministic
    mock generator; it never reaches callers of ``resolve``.
    """
    http_status = 502

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        method: Optional[str] = None,
        retriable: bool = False,
        cause: Optional[BaseException] = None,
    ):
        """
        Args:
            message: Error message
            context: Error context
            method: Remote JSON-RPC method that failed
            retriable: Whether repeating the call may succeed
            cause: Original exception
        """
        context = dict(context or {})
        if method:
            context["method"] = method
        super().__init__(
            message, component="ExternalFactorSource", context=context, cause=cause,
        )
        self.retriable = retriable

    @property
    def timed_out(self) -> bool:
        return bool(self.context.get("timed_out"))


# ==============================================================================
# Data Exceptions
# ==============================================================================

class DataException(ImpactLedgerException):
    """Base exception for data-related errors."""
    ERROR_PREFIX = "IL_DATA"


class MissingData(DataException):
    """Required records are missing, e.g. no readings for a facility period."""
    http_status = 404

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        data_type: Optional[str] = None,
        missing_fields: Optional[List[str]] = None,
    ):
        context = dict(context or {})
        if data_type:
            context["data_type"] = data_type
        if missing_fields:
            context["missing_fields"] = list(missing_fields)
        super().__init__(message, context=context)


class DataAccessError(DataException):
    """A factor store, cache or impact record store could not be read or written."""
    http_status = 503
    retriable = True

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        data_source: Optional[str] = None,
        operation: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        context = dict(context or {})
        if data_source:
            context["data_source"] = data_source
        if operation:
            context["operation"] = operation
        super().__init__(message, context=context, cause=cause)


# ==============================================================================
# Exception Utilities
# ==============================================================================

def format_exception_chain(exc: BaseException) -> str:
    """One log line for an exception and everything it was raised from.

    Links are joined with `` <- ``; engine exceptions add their context.
    """
    links = []
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ImpactLedgerException) and current.context:
            links.append(f"{current} {current.context}")
        elif isinstance(current, ImpactLedgerException):
            links.append(str(current))
        else:
            links.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return " <- ".join(links)


def is_retriable(exc: BaseException) -> bool:
    """True when repeating the operation that raised ``exc`` may succeed."""
    return isinstance(exc, ImpactLedgerException) and exc.retriable
