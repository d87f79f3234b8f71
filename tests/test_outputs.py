"""Tests for build output artifact models."""

import pytest

from builder_contract.errors import ContractViolationError, InvalidConfigError
from builder_contract.files import FileBlob
from builder_contract.outputs import (
    BuildResultV2,
    BuildResultV3,
    EdgeFunction,
    Images,
    Lambda,
    Prerender,
    WildcardDomain,
    generate_manifest,
    iter_lambdas,
    missing_prerender_fallbacks,
    output_kind,
    parse_images,
)
from builder_contract.types import ImageFormat, OutputKind

TOKEN = "t" * 32


@pytest.fixture
def lambda_() -> Lambda:
    return Lambda(
        files={"index.js": FileBlob(data=b"exports.handler = () => {}")},
        handler="index.handler",
        runtime="nodejs18.x",
    )


class TestLambda:
    """Tests for Lambda validation."""

    def test_defaults(self, lambda_: Lambda) -> None:
        assert lambda_.kind is OutputKind.LAMBDA
        assert lambda_.memory is None
        assert dict(lambda_.environment) == {}

    def test_files_are_frozen(self, lambda_: Lambda) -> None:
        with pytest.raises(TypeError):
            lambda_.files["x"] = FileBlob(data=b"")  # type: ignore[index]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"handler": ""},
            {"runtime": ""},
            {"memory": 64},
            {"max_duration": 0},
        ],
    )
    def test_invalid(self, kwargs: dict) -> None:
        params = {"files": {}, "handler": "h", "runtime": "r", **kwargs}
        with pytest.raises(ValueError):
            Lambda(**params)


class TestEdgeFunction:
    """Tests for EdgeFunction validation."""

    def test_valid(self) -> None:
        edge = EdgeFunction(
            name="middleware",
            entrypoint="middleware.js",
            files={"middleware.js": FileBlob(data=b"")},
        )
        assert edge.kind is OutputKind.EDGE_FUNCTION
        assert edge.deployment_target == "v8-worker"

    def test_entrypoint_must_be_in_files(self) -> None:
        with pytest.raises(ValueError, match="entrypoint"):
            EdgeFunction(name="m", entrypoint="missing.js", files={})


class TestPrerender:
    """Tests for Prerender validation."""

    def test_valid(self, lambda_: Lambda) -> None:
        page = Prerender(
            expiration=60,
            lambda_=lambda_,
            fallback=FileBlob(data=b"<html/>"),
            group=1,
            bypass_token=TOKEN,
        )
        assert page.kind is OutputKind.PRERENDER

    def test_never_expires(self, lambda_: Lambda) -> None:
        assert Prerender(expiration=False, lambda_=lambda_).expiration is False

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"expiration": 0},
            {"expiration": True},
            {"expiration": 10, "group": 0},
            {"expiration": 10, "bypass_token": "short"},
        ],
    )
    def test_invalid(self, lambda_: Lambda, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            Prerender(lambda_=lambda_, **kwargs)


class TestOutputKind:
    """Tests for kind dispatch."""

    def test_each_variant(self, lambda_: Lambda) -> None:
        assert output_kind(FileBlob(data=b"")) is OutputKind.FILE
        assert output_kind(lambda_) is OutputKind.LAMBDA
        assert output_kind(Prerender(expiration=1, lambda_=lambda_)) is OutputKind.PRERENDER

    def test_not_an_artifact(self) -> None:
        with pytest.raises(ContractViolationError):
            output_kind({"type": "Lambda"})


class TestImages:
    """Tests for image optimization settings."""

    def test_valid(self) -> None:
        images = parse_images(
            {
                "domains": ["a.com"],
                "sizes": [64, 128],
                "minimumCacheTTL": 60,
                "formats": ["image/avif", "image/webp"],
            }
        )
        assert images.formats == [ImageFormat.AVIF, ImageFormat.WEBP]
        assert images.minimum_cache_ttl == 60
        assert images.to_dict() == {
            "domains": ["a.com"],
            "sizes": [64, 128],
            "minimumCacheTTL": 60,
            "formats": ["image/avif", "image/webp"],
        }

    def test_unsupported_format(self) -> None:
        """image/gif is outside the closed format set."""
        with pytest.raises(InvalidConfigError) as exc_info:
            parse_images(
                {
                    "domains": ["a.com"],
                    "sizes": [64, 128],
                    "formats": ["image/avif", "image/gif"],
                }
            )
        assert exc_info.value.errors[0]["loc"] == "formats.1"

    def test_missing_required(self) -> None:
        with pytest.raises(InvalidConfigError):
            parse_images({"domains": []})


class TestBuildResults:
    """Tests for version 2 and version 3 results."""

    def test_v2_defaults(self) -> None:
        blob = FileBlob(data=b"x")
        result = BuildResultV2(output={"index.js": blob})
        assert result.output["index.js"] is blob
        assert result.routes is None
        assert result.images is None
        assert result.wildcard is None

    def test_v2_parses_image_mapping(self) -> None:
        result = BuildResultV2(
            output={}, images={"domains": [], "sizes": [16]}  # type: ignore[arg-type]
        )
        assert isinstance(result.images, Images)

    def test_v2_rejects_bad_image_format(self) -> None:
        with pytest.raises(InvalidConfigError):
            BuildResultV2(
                output={},
                images={"domains": [], "sizes": [16], "formats": ["image/gif"]},  # type: ignore[arg-type]
            )

    def test_v3_requires_lambda(self) -> None:
        with pytest.raises(ContractViolationError):
            BuildResultV3(output=FileBlob(data=b""))  # type: ignore[arg-type]

    def test_iter_lambdas_includes_prerenders(self, lambda_: Lambda) -> None:
        other = Lambda(files={}, handler="h", runtime="python3.12")
        result = BuildResultV2(
            output={
                "api": lambda_,
                "page": Prerender(expiration=10, lambda_=other),
                "static.txt": FileBlob(data=b""),
            }
        )
        assert list(iter_lambdas(result)) == [lambda_, other]
        assert list(iter_lambdas(BuildResultV3(output=lambda_))) == [lambda_]


class TestMissingPrerenderFallbacks:
    """Tests for the fallback-presence check."""

    def test_present_fallback(self, lambda_: Lambda) -> None:
        fallback = FileBlob(data=b"<html/>")
        result = BuildResultV2(
            output={
                "page": Prerender(expiration=10, lambda_=lambda_, fallback=fallback),
                "page.html": fallback,
            }
        )
        assert missing_prerender_fallbacks(result) == []

    def test_missing_fallback(self, lambda_: Lambda) -> None:
        result = BuildResultV2(
            output={
                "page": Prerender(
                    expiration=10, lambda_=lambda_, fallback=FileBlob(data=b"<html/>")
                )
            }
        )
        assert missing_prerender_fallbacks(result) == ["page"]


class TestGenerateManifest:
    """Tests for manifest generation."""

    def test_v2_manifest(self, lambda_: Lambda) -> None:
        result = BuildResultV2(
            output={"index.html": FileBlob(data=b""), "api": lambda_},
            routes=[{"src": "/api", "dest": "/api"}],
            wildcard=[WildcardDomain(domain="*.a.com", value="$1")],
        )
        manifest = generate_manifest(result, entrypoint="index.html", extra_metadata={"x": 1})

        assert manifest["builder_version"] == 2
        assert manifest["entrypoint"] == "index.html"
        assert manifest["routes"] == [{"src": "/api", "dest": "/api"}]
        assert manifest["wildcard"] == [{"domain": "*.a.com", "value": "$1"}]
        assert manifest["metadata"] == {"x": 1}
        assert manifest["summary"] == {
            "total_artifacts": 2,
            "kinds": {"File": 1, "Lambda": 1},
        }

    def test_v3_manifest(self, lambda_: Lambda) -> None:
        manifest = generate_manifest(BuildResultV3(output=lambda_))
        assert manifest["builder_version"] == 3
        assert manifest["artifacts"] == [
            {
                "path": None,
                "kind": "Lambda",
                "handler": "index.handler",
                "runtime": "nodejs18.x",
                "files": 1,
            }
        ]
