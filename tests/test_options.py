"""Tests for build option models.

Tests Config/Meta parsing and round-tripping, BuildOptions invariants and
request matching.
"""

from pathlib import Path
from types import MappingProxyType

import pytest

from builder_contract.errors import InvalidConfigError, MissingEntrypointError
from builder_contract.files import FileBlob
from builder_contract.options import (
    BuildOptions,
    Config,
    FunctionConfig,
    Meta,
    PrepareCacheOptions,
    ShouldServeOptions,
    parse_size,
    should_serve,
)


class TestParseSize:
    """Tests for human size parsing."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("50mb", 50 * 1024**2),
            ("1.5 GB", int(1.5 * 1024**3)),
            ("512kb", 512 * 1024),
            ("10b", 10),
            (" 2MB ", 2 * 1024**2),
        ],
    )
    def test_valid(self, value: str, expected: int) -> None:
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["fifty megs", "mb", "1.mb", "-5mb"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            parse_size(value)


class TestConfig:
    """Tests for Config parsing."""

    def test_round_trip_preserves_unknown_keys(self) -> None:
        """Well-known and arbitrary keys survive parse then serialize."""
        raw = {
            "outputDirectory": "dist",
            "buildCommand": "npm run build",
            "maxLambdaSize": "50mb",
            "functions": {"api/*.js": {"memory": 1024, "maxDuration": 10}},
            "zeroConfig": True,
            "import": {"lodash": "https://esm.sh/lodash"},
            "customFlag": True,
            "nested": {"anything": [1, 2, {"deep": None}]},
        }
        config = Config.from_dict(raw)

        assert config.output_directory == "dist"
        assert config.import_map == {"lodash": "https://esm.sh/lodash"}
        assert config.extensions == {
            "customFlag": True,
            "nested": {"anything": [1, 2, {"deep": None}]},
        }
        assert config.to_dict() == raw

    def test_empty(self) -> None:
        assert Config.from_dict(None).to_dict() == {}
        assert Config.from_dict({}).extensions == {}

    def test_known_keys_use_aliases(self) -> None:
        keys = Config.known_keys()
        assert "outputDirectory" in keys
        assert "import" in keys
        assert "extensions" not in keys

    def test_get_reads_any_key(self) -> None:
        config = Config.from_dict({"framework": "nextjs", "cacheDirectories": [".next"]})
        assert config.get("framework") == "nextjs"
        assert config.get("cacheDirectories") == [".next"]
        assert config.get("missing", 1) == 1

    def test_wrong_shape_is_invalid_config(self) -> None:
        with pytest.raises(InvalidConfigError) as exc_info:
            Config.from_dict({"outputDirectory": ["not", "a", "string"]})
        assert exc_info.value.errors[0]["loc"] == "outputDirectory"

    def test_invalid_max_lambda_size(self) -> None:
        with pytest.raises(InvalidConfigError):
            Config.from_dict({"maxLambdaSize": "huge"})

    def test_invalid_function_memory(self) -> None:
        with pytest.raises(InvalidConfigError):
            Config.from_dict({"functions": {"api/*.js": {"memory": 64}}})

    def test_function_config_rejects_unknown_keys(self) -> None:
        with pytest.raises(InvalidConfigError):
            Config.from_dict({"functions": {"api/*.js": {"gpu": True}}})

    def test_not_a_mapping(self) -> None:
        with pytest.raises(InvalidConfigError):
            Config.from_dict(["outputDirectory"])  # type: ignore[arg-type]

    def test_max_lambda_size_bytes(self) -> None:
        assert Config.from_dict({"maxLambdaSize": "1mb"}).max_lambda_size_bytes == 1024**2
        assert Config().max_lambda_size_bytes is None

    def test_function_config_lookup(self) -> None:
        config = Config.from_dict(
            {"functions": {"api/**/*.js": {"runtime": "nodejs20.x"}}}
        )
        overrides = config.function_config("api/users/list.js")
        assert isinstance(overrides, FunctionConfig)
        assert overrides.runtime == "nodejs20.x"
        assert config.function_config("index.js") is None


class TestMeta:
    """Tests for Meta parsing."""

    def test_from_dict(self) -> None:
        meta = Meta.from_dict(
            {
                "isDev": True,
                "filesChanged": ["a.js"],
                "env": {"A": "1", "B": None},
                "requestId": "r-1",
            }
        )
        assert meta.is_dev is True
        assert meta.files_changed == ["a.js"]
        assert meta.env == {"A": "1", "B": None}
        assert meta.extensions == {"requestId": "r-1"}
        assert meta.to_dict()["isDev"] is True


class TestBuildOptions:
    """Tests for BuildOptions invariants."""

    def test_missing_entrypoint(self, index_files) -> None:
        """A non-member entrypoint fails before any builder call."""
        with pytest.raises(MissingEntrypointError) as exc_info:
            BuildOptions(files=index_files, entrypoint="missing.js", work_path=Path("/tmp/w"))
        assert exc_info.value.entrypoint == "missing.js"

    def test_files_are_read_only(self, index_files) -> None:
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path="/tmp/w")
        assert isinstance(options.files, MappingProxyType)
        with pytest.raises(TypeError):
            options.files["other.js"] = FileBlob(data=b"")  # type: ignore[index]

    def test_caller_mutation_does_not_leak(self, index_files) -> None:
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path="/tmp/w")
        index_files["late.js"] = FileBlob(data=b"")
        assert "late.js" not in options.files

    def test_coercions(self, index_files) -> None:
        options = BuildOptions(
            files=index_files,
            entrypoint="index.js",
            work_path="/tmp/w",  # type: ignore[arg-type]
            repo_root_path="/tmp",  # type: ignore[arg-type]
            config={"outputDirectory": "dist"},  # type: ignore[arg-type]
            meta={"isDev": True},  # type: ignore[arg-type]
        )
        assert options.work_path == Path("/tmp/w")
        assert options.repo_root_path == Path("/tmp")
        assert options.config.output_directory == "dist"
        assert options.is_dev is True
        assert options.entrypoint_file is index_files["index.js"]

    def test_immutable(self, index_files) -> None:
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path="/tmp/w")
        with pytest.raises(AttributeError):
            options.entrypoint = "other.js"  # type: ignore[misc]

    def test_cache_options_drop_meta(self, index_files) -> None:
        options = BuildOptions(
            files=index_files,
            entrypoint="index.js",
            work_path=Path("/tmp/w"),
            meta=Meta(is_dev=True),
        )
        cache_options = options.cache_options()
        assert type(cache_options) is PrepareCacheOptions
        assert not hasattr(cache_options, "meta")
        assert cache_options.files is options.files
        assert cache_options.work_path == options.work_path


class TestShouldServe:
    """Tests for request matching."""

    @pytest.mark.parametrize(
        ("request_path", "entrypoint", "expected"),
        [
            ("/api/users.js", "api/users.js", True),
            ("/api/users", "api/users.js", True),
            ("/api", "api/index.js", True),
            ("/", "index.js", True),
            ("/api/other", "api/users.js", False),
            ("/api/users", "api/users/index.js", True),
        ],
    )
    def test_matching(self, request_path: str, entrypoint: str, expected: bool) -> None:
        options = ShouldServeOptions(
            request_path=request_path,
            entrypoint=entrypoint,
            files={entrypoint: FileBlob(data=b"")},
            work_path=Path("/tmp/w"),
        )
        assert should_serve(options) is expected

    def test_entrypoint_must_exist(self) -> None:
        options = ShouldServeOptions(
            request_path="/a.js",
            entrypoint="a.js",
            files={},
            work_path=Path("/tmp/w"),
        )
        assert should_serve(options) is False
