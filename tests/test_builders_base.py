"""Tests for the builder base classes and module adapters."""

from pathlib import Path
from types import SimpleNamespace

import pytest

from builder_contract.builders.base import (
    BuilderV2,
    BuilderV3,
    ModuleBuilderV2,
    ModuleBuilderV3,
    adapt_builder,
)
from builder_contract.errors import ContractViolationError
from builder_contract.options import BuildOptions
from builder_contract.outputs import BuildResultV2, BuildResultV3, Lambda


class EchoBuilder(BuilderV2):
    name = "echo"

    async def build(self, options):
        return BuildResultV2(output={options.entrypoint: options.entrypoint_file})


class CachingBuilder(EchoBuilder):
    async def prepare_cache(self, options):
        return {}


class ServerBuilder(BuilderV3):
    async def build(self, options):
        return BuildResultV3(output=Lambda(files={}, handler="h", runtime="r"))

    async def start_dev_server(self, options):
        return None


class TestCapabilityFlags:
    """Capability flags follow the overridden operations."""

    def test_defaults(self) -> None:
        assert EchoBuilder.version == 2
        assert EchoBuilder.supports_prepare_cache is False
        assert ServerBuilder.version == 3

    def test_prepare_cache_override(self) -> None:
        assert CachingBuilder.supports_prepare_cache is True
        assert EchoBuilder.supports_prepare_cache is False

    def test_dev_server_override(self) -> None:
        assert ServerBuilder.supports_dev_server is True
        assert ServerBuilder.supports_prepare_cache is False

    @pytest.mark.asyncio
    async def test_default_prepare_cache_raises(self, index_files) -> None:
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path=Path("/tmp/w"))
        with pytest.raises(NotImplementedError):
            await EchoBuilder().prepare_cache(options.cache_options())

    def test_build_is_abstract(self) -> None:
        with pytest.raises(TypeError):
            BuilderV2()  # type: ignore[abstract]


class TestAdaptBuilder:
    """Tests for turning exports into builders."""

    def test_instance_passthrough(self) -> None:
        builder = EchoBuilder()
        assert adapt_builder(builder) is builder

    def test_class_is_instantiated(self) -> None:
        assert isinstance(adapt_builder(EchoBuilder), EchoBuilder)

    def test_v2_manifest(self) -> None:
        source = SimpleNamespace(version=2, build=lambda options: None)
        builder = adapt_builder(source, name="mod")
        assert isinstance(builder, ModuleBuilderV2)
        assert builder.supports_prepare_cache is False

    def test_v3_manifest_with_optional_operations(self) -> None:
        source = SimpleNamespace(
            version=3,
            build=lambda options: None,
            prepare_cache=lambda options: {},
            start_dev_server=lambda options: None,
        )
        builder = adapt_builder(source, name="mod")
        assert isinstance(builder, ModuleBuilderV3)
        assert builder.supports_prepare_cache is True
        assert builder.supports_dev_server is True

    @pytest.mark.parametrize("version", [None, 1, 4, "3"])
    def test_unsupported_version(self, version) -> None:
        source = SimpleNamespace(version=version, build=lambda options: None)
        with pytest.raises(ContractViolationError, match="version"):
            adapt_builder(source, name="mod")

    def test_missing_build(self) -> None:
        with pytest.raises(ContractViolationError, match="build"):
            adapt_builder(SimpleNamespace(version=2), name="mod")

    def test_v2_with_dev_server_is_rejected(self) -> None:
        source = SimpleNamespace(
            version=2, build=lambda options: None, start_dev_server=lambda options: None
        )
        with pytest.raises(ContractViolationError):
            adapt_builder(source, name="mod")


class TestModuleBuilders:
    """Module builders accept sync and async functions."""

    @pytest.mark.asyncio
    async def test_sync_build(self, index_files) -> None:
        source = SimpleNamespace(
            version=2,
            build=lambda options: BuildResultV2(output=dict(options.files)),
        )
        builder = adapt_builder(source, name="mod")
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path=Path("/tmp/w"))
        result = await builder.build(options)
        assert set(result.output) == {"index.js"}

    @pytest.mark.asyncio
    async def test_async_prepare_cache(self, index_files) -> None:
        async def prepare_cache(options):
            return {"node_modules/x.js": options.files["index.js"]}

        source = SimpleNamespace(
            version=3, build=lambda options: None, prepare_cache=prepare_cache
        )
        builder = adapt_builder(source, name="mod")
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path=Path("/tmp/w"))
        cached = await builder.prepare_cache(options.cache_options())
        assert "index.js" not in cached
        assert set(cached) == {"node_modules/x.js"}

    @pytest.mark.asyncio
    async def test_missing_dev_server_raises(self, index_files) -> None:
        builder = adapt_builder(SimpleNamespace(version=3, build=lambda o: None), name="m")
        options = BuildOptions(files=index_files, entrypoint="index.js", work_path=Path("/tmp/w"))
        assert builder.supports_dev_server is False
        with pytest.raises(NotImplementedError):
            await builder.start_dev_server(options)
