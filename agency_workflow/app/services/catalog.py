from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from pydantic import ValidationError

from agency_workflow.app.models import Stage, StageDefinition

if TYPE_CHECKING:
    from agency_workflow.app.client import WorkflowApiClient
    from agency_workflow.app.services.cache import ResultCache

logger = logging.getLogger("agency_workflow.catalog")

CATALOG_CACHE_KEY = "workflow:stages"

DEFAULT_LABELS: dict[Stage, str] = {
    Stage.applied: "Applied",
    Stage.shortlisted: "Shortlisted",
    Stage.interview_scheduled: "Interview Scheduled",
    Stage.interview_rescheduled: "Interview Rescheduled",
    Stage.interview_passed: "Interview Passed",
    Stage.interview_failed: "Interview Failed",
}

DEFAULT_STAGES: tuple[StageDefinition, ...] = tuple(
    StageDefinition(id=stage.value, label=DEFAULT_LABELS[stage], order=index)
    for index, stage in enumerate(Stage, start=1)
)


def _stage_key(stage: Union[Stage, str]) -> str:
    if isinstance(stage, Stage):
        return stage.value
    return str(stage)


@dataclass(frozen=True)
class StageCatalog:
    stages: tuple[StageDefinition, ...]

    @classmethod
    def default(cls) -> "StageCatalog":
        return cls(stages=DEFAULT_STAGES)

    @classmethod
    def from_payload(cls, payload: Iterable[Any]) -> "StageCatalog":
        stages: list[StageDefinition] = []
        for item in payload:
            try:
                stages.append(StageDefinition.model_validate(item))
            except ValidationError:
                logger.warning("catalog_entry_skipped entry=%r", item)
        stages.sort(key=lambda definition: definition.order)
        return cls(stages=tuple(stages))

    def ordered(self) -> list[StageDefinition]:
        return list(self.stages)

    def ids(self) -> list[str]:
        return [definition.id for definition in self.stages]

    def label(self, stage: Union[Stage, str]) -> str:
        key = _stage_key(stage)
        for definition in self.stages:
            if definition.id == key:
                return definition.label
        return key

    def order_of(self, stage: Union[Stage, str]) -> Optional[int]:
        key = _stage_key(stage)
        for definition in self.stages:
            if definition.id == key:
                return definition.order
        return None

    def filter_stages(self) -> list[StageDefinition]:
        # Rescheduled interviews are counted inside the scheduled bucket.
        return [
            definition
            for definition in self.stages
            if definition.id != Stage.interview_rescheduled.value
        ]


async def load_catalog(client: "WorkflowApiClient", cache: "ResultCache") -> StageCatalog:
    async def fetch() -> StageCatalog:
        definitions = await client.get_stages()
        if not definitions:
            return StageCatalog.default()
        return StageCatalog(stages=tuple(sorted(definitions, key=lambda item: item.order)))

    return await cache.get_or_compute_async(CATALOG_CACHE_KEY, fetch, "catalog")
