"""Tests for configuration parsing and startup validation."""

import pytest

from mixtli.core.config import MAX_URL_TTL_SECONDS, Settings, parse_size
from mixtli.core.errors import ConfigurationError


@pytest.mark.parametrize(
    "value,expected",
    [
        (1024, 1024),
        ("2048", 2048),
        ("16MB", 16 * 1024 * 1024),
        ("4 GB", 4 * 1024**3),
        ("1.5kb", 1536),
        ("1TB", 1024**4),
        ("", 7),
        (None, 7),
        ("lots", 7),
    ],
)
def test_parse_size(value, expected):
    assert parse_size(value, 7) == expected


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def test_plan_limits_from_individual_settings():
    settings = make_settings(FREE_MAX_FILE_BYTES="1MB", PRO_MAX_FILE_BYTES="2MB", PROMAX_MAX_FILE_BYTES="3MB")
    assert settings.plan_limits == {"free": 1024**2, "pro": 2 * 1024**2, "promax": 3 * 1024**2}


def test_plan_limits_json_overrides():
    settings = make_settings(PLAN_LIMITS_JSON='{"free": "5MB"}')
    limits = settings.plan_limits
    assert limits["free"] == 5 * 1024**2
    assert limits["pro"] == 200 * 1024**3


def test_plan_limits_ignore_malformed_json():
    settings = make_settings(PLAN_LIMITS_JSON="{not json")
    assert settings.plan_limits["free"] == 4 * 1024**3


def test_allowed_origins():
    assert make_settings(ALLOWED_ORIGINS='["https://a.example"]').allowed_origins == ["https://a.example"]
    assert make_settings(ALLOWED_ORIGINS="garbage").allowed_origins == []


def test_s3_settings_require_endpoint_bucket_and_credentials():
    settings = make_settings(STORAGE_BACKEND="s3", S3_ENDPOINT="r2.example.com", S3_BUCKET="bucket")

    with pytest.raises(ConfigurationError) as exc_info:
        settings.validate_storage_settings()

    assert "S3_ACCESS_KEY_ID" in str(exc_info.value)
    assert "S3_SECRET_ACCESS_KEY" in str(exc_info.value)


def test_complete_s3_settings_validate():
    settings = make_settings(
        STORAGE_BACKEND="s3",
        S3_ENDPOINT="r2.example.com",
        S3_BUCKET="bucket",
        S3_ACCESS_KEY_ID="id",
        S3_SECRET_ACCESS_KEY="secret",
    )
    settings.validate_storage_settings()


def test_gcs_settings_require_bucket():
    with pytest.raises(ConfigurationError):
        make_settings(STORAGE_BACKEND="gcs").validate_storage_settings()


def test_unknown_backend_rejected():
    with pytest.raises(ConfigurationError):
        make_settings(STORAGE_BACKEND="ftp").validate_storage_settings()


def test_ttl_bounded_by_sigv4_maximum():
    with pytest.raises(ConfigurationError):
        make_settings(URL_TTL_SECONDS=MAX_URL_TTL_SECONDS + 1).validate_storage_settings()
    with pytest.raises(ConfigurationError):
        make_settings(URL_TTL_SECONDS=0).validate_storage_settings()


def test_missing_member_policy_validated():
    with pytest.raises(ConfigurationError):
        make_settings(BUNDLE_MISSING_MEMBER_POLICY="retry").validate_storage_settings()


def test_key_prefix_normalized():
    assert make_settings(KEY_PREFIX="/files/../x/").key_prefix == "files/x"
