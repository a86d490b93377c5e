"""Registry of job kinds: payload schema plus ordered steps per job name."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnknownJobKind

logger = logging.getLogger(__name__)

StepFn = Callable[[BaseModel], Union[Any, Awaitable[Any]]]


@dataclass
class JobStep:
    """One unit of a job's ordered execution sequence."""
    name: str
    run: StepFn


StepsSpec = Union[Sequence[JobStep], Callable[[BaseModel], Sequence[JobStep]]]


@dataclass
class JobDefinition:
    """A job kind: how to validate its payload and which steps it runs."""
    name: str
    payload_model: type[BaseModel]
    steps: StepsSpec = field(default_factory=list)
    description: str = ""

    def validate(self, payload: Any) -> BaseModel:
        """Validate a raw payload. Raises pydantic.ValidationError."""
        if isinstance(payload, self.payload_model):
            return payload
        return self.payload_model.model_validate(payload if payload is not None else {})

    def build_steps(self, payload: BaseModel) -> List[JobStep]:
        if callable(self.steps):
            return list(self.steps(payload))
        return list(self.steps)


class JobRegistry:
    """Closed set of job kinds the worker knows how to run."""

    def __init__(self):
        self._jobs: Dict[str, JobDefinition] = {}

    def register(
        self,
        name: str,
        payload_model: type[BaseModel],
        steps: StepsSpec = (),
        description: str = "",
    ) -> JobDefinition:
        if name in self._jobs:
            logger.warning(f"Replacing job definition for '{name}'")
        definition = JobDefinition(name=name, payload_model=payload_model, steps=steps, description=description)
        self._jobs[name] = definition
        return definition

    def get(self, name: str) -> JobDefinition:
        try:
            return self._jobs[name]
        except KeyError:
            raise UnknownJobKind(name, self.names()) from None

    def validate(self, name: str, payload: Any) -> BaseModel:
        return self.get(name).validate(payload)

    def names(self) -> List[str]:
        return sorted(self._jobs)

    def definitions(self) -> List[JobDefinition]:
        return [self._jobs[name] for name in self.names()]

    def __contains__(self, name: str) -> bool:
        return name in self._jobs


# -- Built-in job kinds --


class AnyPayload(BaseModel):
    """Free-form payload for jobs with no schema."""
    model_config = ConfigDict(extra="allow")


class StepSpec(BaseModel):
    """A simulated step: waits ``delay`` seconds, optionally raising."""
    name: str
    delay: float = Field(default=0.1, ge=0)
    fail: bool = False


class ExecutePayload(BaseModel):
    """Payload of the ``execute`` job: data plus declared steps."""
    data: Any = None
    steps: List[StepSpec] = Field(default_factory=list)


def _simulated_step(spec: StepSpec) -> JobStep:
    async def run(_payload: BaseModel) -> Optional[str]:
        await asyncio.sleep(spec.delay)
        if spec.fail:
            raise RuntimeError(f"step '{spec.name}' failed")
        return spec.name

    return JobStep(name=spec.name, run=run)


def _execute_steps(payload: ExecutePayload) -> List[JobStep]:
    return [_simulated_step(spec) for spec in payload.steps]


def default_registry() -> JobRegistry:
    """Registry with the built-in ``default`` and ``execute`` kinds."""
    registry = JobRegistry()
    registry.register(
        "default",
        AnyPayload,
        description="No steps; completes as soon as it is picked up",
    )
    registry.register(
        "execute",
        ExecutePayload,
        steps=_execute_steps,
        description="Runs the declared steps in order, each waiting its delay",
    )
    return registry
