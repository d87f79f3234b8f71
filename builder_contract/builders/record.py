"""Builder records from project configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from builder_contract.options import Config


class BuilderRecord(BaseModel):
    """Binds a source glob to a builder and its configuration.

    Attributes:
        use: Builder identifier, optionally suffixed with ``@version``.
        src: Glob selecting the entrypoints this builder handles.
        config: Builder configuration.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    use: str = Field(..., min_length=1, description="Builder identifier")
    src: str = Field(default="**", min_length=1, description="Entrypoint glob")
    config: Config = Field(default_factory=Config)

    @field_validator("config", mode="before")
    @classmethod
    def parse_config(cls, v: Any) -> Config:
        """Parse raw mappings, keeping builder-specific keys."""
        if isinstance(v, Config):
            return v
        return Config.from_dict(v)

    def to_dict(self) -> dict[str, Any]:
        """Return the raw record shape."""
        data: dict[str, Any] = {"use": self.use, "src": self.src}
        config = self.config.to_dict()
        if config:
            data["config"] = config
        return data


__all__ = ["BuilderRecord"]
