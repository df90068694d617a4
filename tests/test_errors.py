"""Smoke tests for the gateway error taxonomy."""

import pytest

from mixtli.core.errors import (
    BundleExpired,
    ClientInputError,
    ConfigurationError,
    FeatureDisabled,
    GatewayError,
    QuotaExceeded,
    UpstreamForbidden,
    UpstreamNotFound,
    UpstreamTransientError,
    UpstreamUnauthorized,
)


def test_error_hierarchy():
    """Test that all exceptions inherit from GatewayError."""
    for error_class in (
        ConfigurationError,
        ClientInputError,
        UpstreamUnauthorized,
        UpstreamForbidden,
        UpstreamNotFound,
        UpstreamTransientError,
    ):
        assert issubclass(error_class, GatewayError)

    assert issubclass(QuotaExceeded, ClientInputError)
    assert issubclass(BundleExpired, ClientInputError)
    assert issubclass(FeatureDisabled, ClientInputError)


@pytest.mark.parametrize(
    "error,status",
    [
        (ClientInputError("bad"), 400),
        (QuotaExceeded(10), 400),
        (BundleExpired("old"), 410),
        (FeatureDisabled("off"), 403),
        (UpstreamUnauthorized("creds"), 401),
        (UpstreamForbidden("perms"), 403),
        (UpstreamNotFound("gone"), 404),
        (UpstreamTransientError("down"), 502),
        (ConfigurationError("missing"), 500),
    ],
)
def test_status_codes(error, status):
    assert error.status_code == status


def test_error_body_is_structured():
    body = UpstreamForbidden("Access denied").to_dict()

    assert body["error"] == "Access denied"
    assert body["category"] == "upstream_forbidden"
    assert body["hint"]


def test_quota_exceeded_carries_limit():
    body = QuotaExceeded(4096).to_dict()

    assert body["limitBytes"] == 4096
    assert "4096" in body["error"]


def test_hint_override():
    assert UpstreamNotFound("x", hint="Upload it first").hint == "Upload it first"
