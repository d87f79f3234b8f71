"""Static passthrough builder."""

from __future__ import annotations

import logging

from builder_contract.builders.base import BuilderV2
from builder_contract.files import File
from builder_contract.options import BuildOptions
from builder_contract.outputs import BuildResultV2

logger = logging.getLogger(__name__)


class StaticBuilder(BuilderV2):
    """Serves source files as-is.

    Without ``outputDirectory`` the entrypoint is passed through under its
    own path. With ``outputDirectory`` and ``zeroConfig`` every file under
    that directory is passed through with the directory prefix removed.
    """

    name = "@builder/static"

    async def build(self, options: BuildOptions) -> BuildResultV2:
        config = options.config
        output: dict[str, File] = {}

        if config.zero_config and config.output_directory:
            prefix = config.output_directory.strip("/") + "/"
            for path, file in options.files.items():
                if path.startswith(prefix):
                    output[path[len(prefix) :]] = file
            logger.info(
                "Passing through %d files from %s", len(output), config.output_directory
            )
        else:
            output[options.entrypoint] = options.files[options.entrypoint]

        return BuildResultV2(output=output)


__all__ = ["StaticBuilder"]
