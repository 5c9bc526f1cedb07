"""Pipeline definitions and their validated dependency graph.

Key Responsibilities:
    - Describe a pipeline as named stages that declare their parent stages
    - Reject duplicate stage names, unknown parents and dependency cycles at
      registration time, before any run starts
    - Answer structural queries (roots, children, descendants, topological
      order) used by run state and the registration manifest

Collaborators:
    - Upstream: ``OrchestrationContext.register`` and ``PipelineTopology.build``
    - Downstream: :class:`~docflow.orchestration.run.PipelineRun` consumes the
      resulting :class:`PipelineGraph`

Thread Safety:
    - Graphs are immutable once built and may be shared by concurrent runs
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from docflow.utils.errors import FoundationError

from .stages import StageHandler

# ==============================================================================
# ERRORS
# ==============================================================================


class PipelineDefinitionError(FoundationError):
    """Base class for definition problems detected at registration."""

    status = 400
    problem_type = "https://docflow.dev/problems/invalid-pipeline"


class DuplicateStageError(PipelineDefinitionError):
    def __init__(self, pipeline: str, stage: str) -> None:
        super().__init__(
            f"Duplicate stage '{stage}' in pipeline '{pipeline}'",
            extra={"pipeline": pipeline, "stage": stage},
        )
        self.pipeline = pipeline
        self.stage = stage


class UnknownParentError(PipelineDefinitionError):
    def __init__(self, pipeline: str, stage: str, parent: str) -> None:
        super().__init__(
            f"Stage '{stage}' in pipeline '{pipeline}' depends on unknown stage '{parent}'",
            extra={"pipeline": pipeline, "stage": stage, "parent": parent},
        )
        self.pipeline = pipeline
        self.stage = stage
        self.parent = parent


class CycleError(PipelineDefinitionError):
    """Raised when stage dependencies form a cycle.

    ``stages`` lists the cycle in dependency order with the first stage
    repeated at the end, e.g. ``("a", "b", "a")``.
    """

    def __init__(self, pipeline: str, stages: Sequence[str]) -> None:
        self.pipeline = pipeline
        self.stages = tuple(stages)
        super().__init__(
            f"Dependency cycle in pipeline '{pipeline}': {' -> '.join(self.stages)}",
            extra={"pipeline": pipeline, "stages": list(self.stages)},
        )


class DuplicatePipelineError(PipelineDefinitionError):
    def __init__(self, pipeline: str) -> None:
        super().__init__(
            f"Pipeline '{pipeline}' is already registered", extra={"pipeline": pipeline}
        )
        self.pipeline = pipeline


# ==============================================================================
# DEFINITIONS
# ==============================================================================


@dataclass(slots=True, frozen=True)
class StageDefinition:
    """A named unit of work and the stages it depends on."""

    name: str
    handler: StageHandler[Any, Any]
    parents: tuple[str, ...] = ()
    retries: int = 0
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise PipelineDefinitionError("Stage name must be a non-empty string")
        if not isinstance(self.handler, StageHandler):
            raise PipelineDefinitionError(
                f"Stage '{self.name}' handler must implement StageHandler"
            )
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise PipelineDefinitionError(
                f"Stage '{self.name}' retries must be a non-negative integer"
            )
        if isinstance(self.parents, str):
            raise PipelineDefinitionError(
                f"Stage '{self.name}' parents must be a collection of stage names"
            )
        # parents behave as a set; keep first-seen order for deterministic output
        object.__setattr__(self, "parents", tuple(dict.fromkeys(self.parents)))


@dataclass(slots=True, frozen=True)
class PipelineDefinition:
    """Ordered collection of stages triggered by one or more events."""

    name: str
    stages: tuple[StageDefinition, ...]
    on_events: tuple[str, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise PipelineDefinitionError("Pipeline name must be a non-empty string")
        object.__setattr__(self, "stages", tuple(self.stages))
        if isinstance(self.on_events, str):
            object.__setattr__(self, "on_events", (self.on_events,))
        else:
            object.__setattr__(self, "on_events", tuple(self.on_events))
        if not self.stages:
            raise PipelineDefinitionError(f"Pipeline '{self.name}' declares no stages")


# ==============================================================================
# GRAPH
# ==============================================================================


@dataclass(slots=True, frozen=True)
class PipelineGraph:
    """Validated, immutable dependency graph of a pipeline."""

    definition: PipelineDefinition
    _stages: Mapping[str, StageDefinition] = field(repr=False)
    _children: Mapping[str, tuple[str, ...]] = field(repr=False)
    _order: tuple[str, ...] = field(repr=False)

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def on_events(self) -> tuple[str, ...]:
        return self.definition.on_events

    def __iter__(self) -> Iterator[str]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, name: object) -> bool:
        return name in self._stages

    def stage(self, name: str) -> StageDefinition:
        return self._stages[name]

    def parents(self, name: str) -> tuple[str, ...]:
        return self._stages[name].parents

    def children(self, name: str) -> tuple[str, ...]:
        return self._children[name]

    def roots(self) -> tuple[str, ...]:
        return tuple(name for name, stage in self._stages.items() if not stage.parents)

    def topological_order(self) -> tuple[str, ...]:
        return self._order

    def descendants(self, name: str) -> tuple[str, ...]:
        """Return every stage transitively depending on ``name`` in topological order."""
        seen: set[str] = set()
        queue = deque(self._children[name])
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            queue.extend(self._children[current])
        return tuple(stage for stage in self._order if stage in seen)

    def describe(self) -> dict[str, Any]:
        """Registration manifest entry for this pipeline."""
        return {
            "name": self.name,
            "description": self.definition.description,
            "events": list(self.on_events),
            "stages": [
                {
                    "name": stage.name,
                    "description": stage.description,
                    "parents": list(stage.parents),
                    "retries": stage.retries,
                    **stage.handler.describe(),
                }
                for stage in self.definition.stages
            ],
        }


def _find_cycle(pipeline: str, stages: Mapping[str, StageDefinition]) -> None:
    """Depth-first search with colour marking over parent edges."""
    white, grey, black = 0, 1, 2
    colour = dict.fromkeys(stages, white)
    for start in stages:
        if colour[start] != white:
            continue
        path: list[str] = [start]
        iterators: list[Iterator[str]] = [iter(stages[start].parents)]
        colour[start] = grey
        while iterators:
            try:
                parent = next(iterators[-1])
            except StopIteration:
                colour[path.pop()] = black
                iterators.pop()
                continue
            if colour[parent] == grey:
                # path holds child -> parent links; report in dependency order
                cycle = path[path.index(parent):] + [parent]
                raise CycleError(pipeline, list(reversed(cycle)))
            if colour[parent] == white:
                colour[parent] = grey
                path.append(parent)
                iterators.append(iter(stages[parent].parents))


def _topological_order(stages: Mapping[str, StageDefinition]) -> tuple[str, ...]:
    """Kahn's algorithm using declaration order as tie-breaker."""
    position = {name: index for index, name in enumerate(stages)}
    remaining = {name: len(stage.parents) for name, stage in stages.items()}
    children: dict[str, list[str]] = {name: [] for name in stages}
    for name, stage in stages.items():
        for parent in stage.parents:
            children[parent].append(name)
    ready = [name for name, count in remaining.items() if count == 0]
    order: list[str] = []
    while ready:
        ready.sort(key=position.__getitem__)
        current = ready.pop(0)
        order.append(current)
        for child in children[current]:
            remaining[child] -= 1
            if remaining[child] == 0:
                ready.append(child)
    return tuple(order)


def validate_pipeline(definition: PipelineDefinition) -> PipelineGraph:
    """Validate ``definition`` and build its :class:`PipelineGraph`.

    Raises:
        DuplicateStageError: Two stages share a name.
        UnknownParentError: A stage names a parent that is not declared.
        CycleError: The parent relation is not acyclic.
    """
    stages: dict[str, StageDefinition] = {}
    for stage in definition.stages:
        if stage.name in stages:
            raise DuplicateStageError(definition.name, stage.name)
        stages[stage.name] = stage
    for stage in definition.stages:
        for parent in stage.parents:
            if parent not in stages:
                raise UnknownParentError(definition.name, stage.name, parent)
            if parent == stage.name:
                raise CycleError(definition.name, (stage.name, stage.name))
    _find_cycle(definition.name, stages)

    children: dict[str, list[str]] = {name: [] for name in stages}
    for stage in definition.stages:
        for parent in stage.parents:
            children[parent].append(stage.name)
    return PipelineGraph(
        definition=definition,
        _stages=MappingProxyType(stages),
        _children=MappingProxyType({name: tuple(kids) for name, kids in children.items()}),
        _order=_topological_order(stages),
    )


__all__ = [
    "CycleError",
    "DuplicatePipelineError",
    "DuplicateStageError",
    "PipelineDefinition",
    "PipelineDefinitionError",
    "PipelineGraph",
    "StageDefinition",
    "UnknownParentError",
    "validate_pipeline",
]
