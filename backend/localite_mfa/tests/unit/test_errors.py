"""Unit tests for the error hierarchy."""

from localite_mfa.core.errors import (
    ConcurrentUpdateError,
    ConfigurationError,
    InfrastructureError,
    StoreUnavailableError,
    ValidationError,
    redact,
)


class TestErrors:
    def test_store_unavailable(self):
        cause = ConnectionError("refused")

        error = StoreUnavailableError("get", "connection refused", cause=cause)

        assert isinstance(error, InfrastructureError)
        assert error.code == "STORE_UNAVAILABLE"
        assert error.operation == "get"
        assert error.retryable is True
        assert error.__cause__ is cause
        assert str(error) == "STORE_UNAVAILABLE: Store get failed: connection refused"

    def test_configuration_error_is_not_retryable(self):
        error = ConfigurationError("SMS_GATEWAY_URL is required", config_key="SMS_GATEWAY_URL")

        assert error.retryable is False
        assert error.to_dict() == {
            "error": "CONFIGURATION_ERROR",
            "message": "SMS_GATEWAY_URL is required",
            "details": {"config_key": "SMS_GATEWAY_URL"},
        }

    def test_validation_error_without_field(self):
        assert ValidationError("bad input").details == {}

    def test_concurrent_update_details(self):
        error = ConcurrentUpdateError("backup_codes", 5)

        assert error.details == {"record": "backup_codes", "attempts": 5}

    def test_context_is_redacted(self):
        error = StoreUnavailableError("set", "timeout").with_context(
            uid="user-123", phone="+886912345678"
        )

        data = error.to_dict(include_context=True)

        assert data["context"] == {"uid": "user-123", "phone": "***REDACTED***"}
        assert "context" not in error.to_dict()


def test_redact_nested():
    assert redact({"outer": {"totp_secret": "JBSWY3DP"}, "count": 3}) == {
        "outer": {"totp_secret": "***REDACTED***"},
        "count": 3,
    }
