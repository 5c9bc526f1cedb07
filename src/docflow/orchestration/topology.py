"""Declarative pipeline topologies loaded from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .graph import PipelineDefinition, PipelineDefinitionError, StageDefinition
from .stages import HandlerRegistry


class StageTopology(BaseModel):
    """Declarative representation of a stage; ``handler`` defaults to ``name``."""

    name: str = Field(min_length=1)
    handler: str | None = None
    parents: list[str] = Field(default_factory=list)
    retries: int = Field(default=0, ge=0)
    description: str = ""


class PipelineTopology(BaseModel):
    """Stages of a named pipeline and the events that trigger it."""

    name: str = Field(min_length=1)
    description: str = ""
    on_events: list[str] = Field(default_factory=list)
    stages: list[StageTopology] = Field(min_length=1)

    @classmethod
    def from_yaml(cls, path: str | Path | None = None, *, text: str | None = None) -> PipelineTopology:
        if path is None and text is None:
            raise ValueError("Either path or text must be provided")
        raw: Any
        if text is not None:
            raw = yaml.safe_load(text) or {}
        else:
            raw = yaml.safe_load(Path(path).expanduser().read_text()) or {}
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise PipelineDefinitionError(
                "Invalid pipeline topology", detail=str(exc)
            ) from exc

    def build(self, registry: HandlerRegistry) -> PipelineDefinition:
        """Resolve handler keys through ``registry`` into a definition."""
        return PipelineDefinition(
            name=self.name,
            description=self.description,
            on_events=tuple(self.on_events),
            stages=tuple(
                StageDefinition(
                    name=stage.name,
                    handler=registry.get(stage.handler or stage.name),
                    parents=tuple(stage.parents),
                    retries=stage.retries,
                    description=stage.description,
                )
                for stage in self.stages
            ),
        )


__all__ = ["PipelineTopology", "StageTopology"]
