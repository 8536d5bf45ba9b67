"""Tests for error types and codes."""

import pytest

from polytrack.core.errors import (
    CacheError,
    ConfigError,
    DiscoveryError,
    ErrorCode,
    InternalError,
    InvalidTarget,
    MalformedAggregation,
    PersistenceError,
    PolytrackError,
    QueryError,
    RegistryError,
    UnknownAssociation,
)


class TestErrorCode:
    """Error code value tests."""

    @pytest.mark.parametrize(
        ("code", "expected_range"),
        [
            (ErrorCode.UNKNOWN_ASSOCIATION, 1000),
            (ErrorCode.INVALID_TARGET, 1000),
            (ErrorCode.CONFIG_PARSE_ERROR, 2000),
            (ErrorCode.MALFORMED_AGGREGATION, 3000),
            (ErrorCode.QUERY_TIMEOUT, 3000),
            (ErrorCode.CACHE_CORRUPT_ENTRY, 4000),
            (ErrorCode.DISCOVERY_FIELD_FAILED, 5000),
            (ErrorCode.PERSISTENCE_SAVE_FAILED, 6000),
            (ErrorCode.INTERNAL_ERROR, 9000),
        ],
    )
    def test_given_error_code_when_checked_then_in_correct_range(
        self, code: ErrorCode, expected_range: int
    ) -> None:
        """Error codes fall within their designated numeric range."""
        assert expected_range <= code.value < expected_range + 1000


class TestPolytrackError:
    """Base error behavior tests."""

    def test_given_error_when_to_dict_then_serializes_all_fields(self) -> None:
        """Error serializes to dict with all required fields."""
        # Given
        error = PolytrackError(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message="Test message",
            retryable=True,
            details={"key": "value"},
        )

        # When
        result = error.to_dict()

        # Then
        assert result == {
            "code": 2001,
            "error": "CONFIG_PARSE_ERROR",
            "message": "Test message",
            "retryable": True,
            "details": {"key": "value"},
        }

    def test_given_error_when_str_then_human_readable(self) -> None:
        """Error string representation is human readable."""
        error = PolytrackError(code=ErrorCode.INTERNAL_ERROR, message="Something broke")

        assert str(error) == "[9001] INTERNAL_ERROR: Something broke"

    def test_given_subclass_when_raised_then_caught_as_base(self) -> None:
        """Every specific error is catchable as PolytrackError."""
        with pytest.raises(PolytrackError):
            raise UnknownAssociation.for_name("loggable")


class TestRegistryErrors:
    """Registry error factory tests."""

    def test_unknown_association_carries_name(self) -> None:
        error = UnknownAssociation.for_name("notable")

        assert error.code == ErrorCode.UNKNOWN_ASSOCIATION
        assert error.details == {"association": "notable"}
        assert "notable" in error.message

    @pytest.mark.parametrize(
        ("factory", "reason"),
        [
            (InvalidTarget.not_registered, "unregistered"),
            (InvalidTarget.inactive, "inactive"),
        ],
    )
    def test_invalid_target_records_reason(self, factory, reason: str) -> None:
        error = factory("loggable", "tasks")

        assert error.code == ErrorCode.INVALID_TARGET
        assert error.details["reason"] == reason
        assert error.details["target_kind"] == "tasks"

    def test_fields_fixed_names_both_values(self) -> None:
        error = RegistryError.fields_fixed(
            "loggable", "foreign_id_field", "loggable_id", "owner_id"
        )

        assert error.code == ErrorCode.ASSOCIATION_FIELDS_FIXED
        assert error.details["current"] == "loggable_id"
        assert error.details["requested"] == "owner_id"

    def test_malformed_identifier(self) -> None:
        error = RegistryError.malformed_identifier("target kind", "Jobs!")

        assert error.code == ErrorCode.MALFORMED_IDENTIFIER
        assert error.details == {"kind": "target kind", "value": "Jobs!"}


class TestConfigError:
    """ConfigError factory method tests."""

    def test_given_path_when_parse_error_then_includes_path(self) -> None:
        error = ConfigError.parse_error("/etc/polytrack.yaml", "bad indent")

        assert error.code == ErrorCode.CONFIG_PARSE_ERROR
        assert "/etc/polytrack.yaml" in error.message
        assert error.details["reason"] == "bad indent"

    def test_given_value_when_invalid_value_then_stringifies(self) -> None:
        error = ConfigError.invalid_value("cache.max_entries", 0, "must be >= 1")

        assert error.code == ErrorCode.CONFIG_INVALID_VALUE
        assert error.details["value"] == "0"


class TestRetryability:
    """Only transient failures are retryable."""

    @pytest.mark.parametrize(
        ("error", "retryable"),
        [
            (QueryError.timeout("loggable", 1.5), True),
            (PersistenceError.save_failed("/tmp/x.json", "disk full"), True),
            (DiscoveryError.field_failed("logs", "kind", "boom"), True),
            (QueryError.missing_source_table("loggable"), False),
            (MalformedAggregation.unknown_function("median"), False),
            (PersistenceError.load_failed("/tmp/x.json", "bad json"), False),
            (CacheError.corrupt_entry("a" * 64, "unpicklable"), False),
            (DiscoveryError.invalid_target("loggable", "Bad-Kind"), False),
            (InternalError.unexpected("oops", where="test"), False),
        ],
    )
    def test_retryable_flag(self, error: PolytrackError, retryable: bool) -> None:
        assert error.retryable is retryable

    def test_internal_error_keeps_details(self) -> None:
        error = InternalError.unexpected("oops", where="test")

        assert error.details == {"where": "test"}
