"""Reconciliation error taxonomy and translation of AWS failures into it.

Every failure a run can report is a ``ReconcileError`` whose ``category``
says what kind of failure it was. Subclasses only fix the category, the
severity and whether a caller-side retry is worth attempting; callers
branch on ``category`` and ``retryable``, never on the message.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from converge.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorCategory(Enum):
    INVALID_SPEC = "invalid_spec"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    PROVIDER = "provider"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"
    DEPENDENCY = "dependency"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    CRITICAL = "critical"  # the run cannot continue
    ERROR = "error"        # one resource failed
    WARNING = "warning"


@dataclass
class ErrorContext:
    """Where an error happened: resource, operation and AWS request."""
    kind: Optional[str] = None
    identity: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class ReconcileError(Exception):
    """Base class for every failure reported by a reconciliation."""

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR
    default_message: Optional[str] = None
    default_retryable = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None,
        retryable: Optional[bool] = None
    ):
        """Initialize the error.

        Args:
            message: Human-readable message; subclasses may supply a default
            context: Resource and AWS request the error belongs to
            cause: Exception this error was translated from
            suggestions: Fixes worth trying, shown by the CLI
            retryable: Whether repeating the whole reconciliation may succeed;
                defaults to the class's ``default_retryable``
        """
        message = message if message is not None else (self.default_message or "")
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = list(suggestions or [])
        self.retryable = self.default_retryable if retryable is None else retryable

    def to_user_message(self) -> str:
        lines = [f"{self.severity.value.upper()}: {self.message}"]
        if self.context.kind and self.context.identity:
            lines.append(f"   Resource: {self.context.kind}/{self.context.identity}")
        if self.context.operation:
            lines.append(f"   Operation: {self.context.operation}")
        if self.cause:
            lines.append(f"   Cause: {self.cause}")
        if self.suggestions:
            lines.append("\nSuggested fixes:")
            lines.extend(f"   {i}. {text}" for i, text in enumerate(self.suggestions, 1))
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Serializable form for JSON logs and reports."""
        return {
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'retryable': self.retryable,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions,
        }


class InvalidSpecError(ReconcileError):
    """Malformed resource spec; raised before any provider call."""

    category = ErrorCategory.INVALID_SPEC

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = errors or []


class ProviderUnavailableError(ReconcileError):
    """The provider could not be reached (transport or authentication failure)."""

    category = ErrorCategory.PROVIDER_UNAVAILABLE
    severity = ErrorSeverity.CRITICAL
    default_retryable = True


class ProviderError(ReconcileError):
    """The provider rejected a request; ``code`` is the provider's error code."""

    category = ErrorCategory.PROVIDER

    def __init__(self, message: str, code: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code


class ReconcileTimeoutError(ReconcileError):
    category = ErrorCategory.TIMEOUT
    default_message = "timeout"


class ReconcileCancelledError(ReconcileError):
    category = ErrorCategory.CANCELLED
    severity = ErrorSeverity.WARNING
    default_message = "cancelled"


class ConfigurationError(ReconcileError):
    """Unusable configuration file or settings."""

    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class DependencyError(ReconcileError):
    """Broken dependency between resource specs: missing, cyclic or unresolved."""

    category = ErrorCategory.DEPENDENCY


NETWORK_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionError,
    TimeoutError,
)


class ErrorHandler:
    """Translates botocore and transport exceptions into ReconcileErrors."""

    # Codes meaning we cannot talk to AWS at all, with a readable explanation
    UNAVAILABLE_ERROR_CODES = {
        'InvalidClientTokenId': 'AWS credentials are invalid or expired',
        'SignatureDoesNotMatch': 'AWS credential signature is invalid',
        'ExpiredToken': 'AWS session token has expired',
        'ExpiredTokenException': 'AWS session token has expired',
        'AuthFailure': 'AWS could not validate the credentials',
        'RequestTimeout': 'Request timed out',
        'ServiceUnavailable': 'AWS service temporarily unavailable',
        'InternalError': 'AWS reported an internal error',
        'InternalFailure': 'AWS reported an internal failure',
    }

    # Rejections that tend to clear up when the reconciliation is repeated
    RETRYABLE_ERROR_CODES = frozenset({
        'Throttling',
        'ThrottlingException',
        'TooManyRequestsException',
        'RequestLimitExceeded',
        'RequestThrottled',
        'IncorrectState',
        'DependencyViolation',
        'ResourceInUse',
    })

    SUGGESTIONS = {
        'AccessDenied': ['Check the IAM policies of the calling user or role'],
        'UnauthorizedOperation': [
            'Grant the IAM permission named in the error',
            'Check that you are working in the intended region',
        ],
        'AddressLimitExceeded': ['Release unused Elastic IPs or request a limit increase'],
        'NatGatewayLimitExceeded': ['Delete unused NAT gateways in the zone or request a limit increase'],
        'InvalidParameterValue': ['Check that referenced ids exist in this region and account'],
    }

    NETWORK_SUGGESTIONS = [
        'Check connectivity to the AWS endpoints (proxy, VPN, firewall)',
    ]

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> ReconcileError:
        """Return ``error`` as a ReconcileError.

        ReconcileErrors pass through untouched; anything unrecognized becomes
        an UNKNOWN error that keeps ``context`` and the original cause.
        """
        context = context or ErrorContext()

        if isinstance(error, ReconcileError):
            return error
        if isinstance(error, ClientError):
            return self._from_client_error(error, context)
        if isinstance(error, NoCredentialsError):
            return ProviderUnavailableError(
                'No AWS credentials found', context=context, cause=error, retryable=False,
                suggestions=['Run aws configure, set AWS_* environment variables or pass --profile'],
            )
        if isinstance(error, PartialCredentialsError):
            return ProviderUnavailableError(
                'Incomplete AWS credentials', context=context, cause=error, retryable=False,
                suggestions=['Provide both the access key id and the secret access key'],
            )
        if isinstance(error, NETWORK_ERRORS):
            return ProviderUnavailableError(
                f'Network error: {error}', context=context, cause=error,
                suggestions=self.NETWORK_SUGGESTIONS,
            )

        return ReconcileError(str(error), context=context, cause=error,
                              suggestions=['Check the JSON log for the full traceback'])

    def _from_client_error(self, error: ClientError, context: ErrorContext) -> ReconcileError:
        details = error.response.get('Error', {})
        code = details.get('Code', 'Unknown')
        message = details.get('Message', str(error))

        context.request_id = error.response.get('ResponseMetadata', {}).get('RequestId')
        context.aws_operation = context.aws_operation or getattr(error, 'operation_name', None)

        if code in self.UNAVAILABLE_ERROR_CODES:
            return ProviderUnavailableError(
                f"{self.UNAVAILABLE_ERROR_CODES[code]}: {message}",
                context=context,
                cause=error,
                suggestions=['Check the credentials with: aws sts get-caller-identity'],
            )

        return ProviderError(
            f"{code}: {message}",
            code=code,
            context=context,
            cause=error,
            suggestions=self.SUGGESTIONS.get(code),
            retryable=code in self.RETRYABLE_ERROR_CODES,
        )

    def log_error(self, error: ReconcileError):
        """Log the user-facing message, plus the full record at DEBUG."""
        level = 'warning' if error.severity == ErrorSeverity.WARNING else 'error'
        getattr(logger, level)(error.to_user_message())
        logger.debug(f"Error details: {error.to_dict()}")


# Shared instance used across the package
error_handler = ErrorHandler()
