"""Tests for shared types and the error taxonomy."""

from builder_contract.errors import (
    BuilderContractError,
    BuilderNotFoundError,
    BuilderThrewError,
    CacheError,
    ContractViolationError,
    DevServerPortConflictError,
    InvalidConfigError,
    MissingEntrypointError,
    UnsafePathError,
    error_to_dict,
)
from builder_contract.types import (
    BuildStatus,
    DevServerState,
    FileAccess,
    ImageFormat,
    OutputKind,
)


class TestEnums:
    """Test enum definitions."""

    def test_build_status_values(self) -> None:
        """BuildStatus should have expected values."""
        assert BuildStatus.PENDING.value == "pending"
        assert BuildStatus.RUNNING.value == "running"
        assert BuildStatus.SUCCEEDED.value == "succeeded"
        assert BuildStatus.FAILED.value == "failed"

    def test_dev_server_state_values(self) -> None:
        """DevServerState covers the spawn lifecycle."""
        assert {s.value for s in DevServerState} == {
            "not_started",
            "declined",
            "starting",
            "running",
            "stopped",
        }

    def test_output_kind_values(self) -> None:
        """OutputKind tags every artifact variant."""
        assert {k.value for k in OutputKind} == {
            "File",
            "Lambda",
            "EdgeFunction",
            "Prerender",
        }

    def test_file_access_values(self) -> None:
        assert FileAccess.SYNC.value == "sync"
        assert FileAccess.ASYNC.value == "async"

    def test_image_format_is_closed(self) -> None:
        """Only avif and webp are accepted."""
        assert {f.value for f in ImageFormat} == {"image/avif", "image/webp"}


class TestErrors:
    """Test error codes and serialization."""

    def test_codes_are_distinct(self) -> None:
        codes = {
            MissingEntrypointError("a").code,
            InvalidConfigError("x").code,
            BuilderThrewError("a", "build", "boom").code,
            ContractViolationError("x").code,
            CacheError("x").code,
            BuilderNotFoundError("x").code,
            DevServerPortConflictError(3000).code,
            UnsafePathError("../x").code,
        }
        assert len(codes) == 8

    def test_code_override(self) -> None:
        err = BuilderContractError("busy", code="dev_server_running")
        assert err.code == "dev_server_running"

    def test_contract_violation_is_not_builder_threw(self) -> None:
        """Violations are surfaced distinctly from thrown errors."""
        assert not issubclass(ContractViolationError, BuilderThrewError)

    def test_error_to_dict(self) -> None:
        result = error_to_dict(MissingEntrypointError("api/index.js"))
        assert result == {
            "code": "missing_entrypoint",
            "message": "Entrypoint not found in files: api/index.js",
            "details": {"entrypoint": "api/index.js"},
        }

    def test_error_to_dict_plain_exception(self) -> None:
        assert error_to_dict(RuntimeError("boom")) == {
            "code": "internal_error",
            "message": "boom",
        }

    def test_builder_threw_message(self) -> None:
        err = BuilderThrewError("index.js", "prepare_cache", "disk full")
        assert "prepare_cache" in str(err)
        assert err.details == {"entrypoint": "index.js", "operation": "prepare_cache"}
