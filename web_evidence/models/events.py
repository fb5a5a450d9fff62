from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class EventType(str, Enum):
    STAGE_CHANGED = "stage_changed"
    PLAN_READY = "plan_ready"
    SEARCH_STARTED = "search_started"
    SERP_FETCHED = "serp_fetched"
    PAGE_FETCHED = "page_fetched"
    EVIDENCE_SELECTED = "evidence_selected"
    PIPELINE_COMPLETE = "pipeline_complete"
    ERROR = "error"


class PipelineStage(str, Enum):
    START = "start"
    PLANNING = "planning"
    SKIP = "skip"
    SEARCHING = "searching"
    FETCHING = "fetching"
    SCORING = "scoring"
    SELECTING = "selecting"
    CHUNKING = "chunking"
    DONE = "done"


@dataclass
class PipelineEvent:
    event: EventType
    data: dict[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        return f"event: {self.event.value}\ndata: {json.dumps(self.data)}\n\n"


EventSink = Callable[[PipelineEvent], None]
