"""
Processor registry.

Maps a knowledge source's source_type to the processor that syncs it. Built
once at startup and handed to the scheduler; processor modules add their
entry through an explicit register() call.
"""
import logging
from typing import Optional, Protocol, Union

from api.services.crm_types import Client, KnowledgeSource, ProcessResult, SourceType

logger = logging.getLogger(__name__)


class SourceProcessor(Protocol):
    """Syncs one knowledge source. Per-item failures are counted, not raised."""

    async def __call__(self, source: KnowledgeSource, clients: list[Client]) -> ProcessResult: ...


def _key(source_type: Union[str, SourceType]) -> str:
    return source_type.value if isinstance(source_type, SourceType) else str(source_type)


class ProcessorRegistry:
    """Source type -> processor lookup."""

    def __init__(self):
        self._processors: dict[str, SourceProcessor] = {}

    def register(self, source_type: Union[str, SourceType], processor: SourceProcessor) -> None:
        key = _key(source_type)
        if key in self._processors:
            logger.warning(f"Replacing processor registered for source type '{key}'")
        self._processors[key] = processor

    def get(self, source_type: Union[str, SourceType]) -> Optional[SourceProcessor]:
        return self._processors.get(_key(source_type))

    def __contains__(self, source_type) -> bool:
        return _key(source_type) in self._processors

    @property
    def source_types(self) -> list[str]:
        return sorted(self._processors)
