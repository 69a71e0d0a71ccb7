"""Utility modules for logging, errors, retry and AWS client management."""

from converge.utils.aws_client import AWSClientManager, AWSCredentials
from converge.utils.retry import RetryPolicy, get_default_retry_policy, set_default_retry_policy
from converge.utils.errors import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ReconcileError,
    InvalidSpecError,
    ProviderUnavailableError,
    ProviderError,
    ReconcileTimeoutError,
    ReconcileCancelledError,
    ConfigurationError,
    DependencyError,
    ErrorHandler,
    error_handler
)
from converge.utils.logging import get_logger, setup_logging

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',

    # Retry
    'RetryPolicy',
    'get_default_retry_policy',
    'set_default_retry_policy',

    # Errors
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ReconcileError',
    'InvalidSpecError',
    'ProviderUnavailableError',
    'ProviderError',
    'ReconcileTimeoutError',
    'ReconcileCancelledError',
    'ConfigurationError',
    'DependencyError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
]
