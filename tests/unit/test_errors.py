"""Tests for error taxonomy and AWS error translation."""

from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from converge.utils.errors import (
    ErrorCategory,
    ErrorContext,
    ErrorHandler,
    ErrorSeverity,
    InvalidSpecError,
    ProviderError,
    ProviderUnavailableError,
    ReconcileCancelledError,
    ReconcileError,
    ReconcileTimeoutError,
)


def client_error(code, message="boom", operation="CreateNatGateway"):
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"RequestId": "req-1"}},
        operation,
    )


class TestReconcileError:
    def test_defaults(self):
        err = ReconcileError("something broke")
        assert str(err) == "something broke"
        assert err.category == ErrorCategory.UNKNOWN
        assert not err.retryable

    def test_user_message_includes_context_and_suggestions(self):
        err = ProviderError(
            "AccessDenied: nope",
            context=ErrorContext(kind="nat_gateway", identity="subnet-1", operation="create"),
            suggestions=["Check IAM policies"],
        )
        message = err.to_user_message()
        assert "nat_gateway/subnet-1" in message
        assert "Operation: create" in message
        assert "1. Check IAM policies" in message

    def test_to_dict(self):
        data = ReconcileTimeoutError().to_dict()
        assert data["message"] == "timeout"
        assert data["category"] == "timeout"
        assert data["context"]["kind"] is None


class TestSubclasses:
    def test_categories(self):
        assert InvalidSpecError("x").category == ErrorCategory.INVALID_SPEC
        assert ProviderError("x").category == ErrorCategory.PROVIDER
        assert ReconcileTimeoutError().category == ErrorCategory.TIMEOUT
        assert ReconcileCancelledError().message == "cancelled"

    def test_unavailable_is_critical_and_retryable(self):
        err = ProviderUnavailableError("down")
        assert err.severity == ErrorSeverity.CRITICAL
        assert err.retryable


class TestErrorHandler:
    handler = ErrorHandler()

    def test_reconcile_errors_pass_through(self):
        err = ProviderError("x")
        assert self.handler.handle_exception(err) is err

    def test_client_error_becomes_provider_error(self):
        err = self.handler.handle_exception(client_error("InvalidParameterValue", "bad subnet"))
        assert isinstance(err, ProviderError)
        assert err.code == "InvalidParameterValue"
        assert err.message == "InvalidParameterValue: bad subnet"
        assert err.context.request_id == "req-1"
        assert err.context.aws_operation == "CreateNatGateway"
        assert err.suggestions
        assert not err.retryable

    def test_throttling_is_retryable(self):
        err = self.handler.handle_exception(client_error("Throttling"))
        assert err.category == ErrorCategory.PROVIDER
        assert err.retryable

    def test_auth_failure_is_unavailable(self):
        err = self.handler.handle_exception(client_error("ExpiredToken"))
        assert err.category == ErrorCategory.PROVIDER_UNAVAILABLE

    def test_missing_credentials_not_retryable(self):
        err = self.handler.handle_exception(NoCredentialsError())
        assert err.category == ErrorCategory.PROVIDER_UNAVAILABLE
        assert not err.retryable

    def test_network_error(self):
        err = self.handler.handle_exception(EndpointConnectionError(endpoint_url="https://ec2.us-east-1.amazonaws.com"))
        assert err.category == ErrorCategory.PROVIDER_UNAVAILABLE
        assert err.retryable

    def test_unknown_exception(self):
        context = ErrorContext(kind="route", identity="rtb-1")
        err = self.handler.handle_exception(ValueError("weird"), context)
        assert err.category == ErrorCategory.UNKNOWN
        assert err.context is context
        assert isinstance(err.cause, ValueError)
