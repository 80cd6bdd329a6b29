"""
Request context passed into every pipeline call.

Holds the settings, the loaded session view, the conversation turns and the host
collaborators, so no stage reads global state or stores a global status flag.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from ..models.core import PipelineStatus, SessionData, Turn
from ..utils.bedrock_llm import LLMService
from ..utils.config import MemoryConfig
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_ms

logger = get_logger(__name__)


@dataclass
class PipelineContext:
    settings: MemoryConfig
    data: SessionData
    turns: List[Turn]
    character_name: str
    user_name: str = ''
    llm: Optional[LLMService] = None
    default_profile: Optional[str] = None  # Used when settings.extraction_profile is empty
    character_description: str = ''
    persona_description: str = ''
    group_members: List[str] = field(default_factory=list)
    is_group_chat: bool = False
    save: Optional[Callable[[], Any]] = None  # sync or async
    inject: Optional[Callable[[str], None]] = None  # '' clears the injection
    on_status: Optional[Callable[[PipelineStatus], None]] = None
    notify: Optional[Callable[[str, str], None]] = None  # (level, message)
    clock: Callable[[], int] = now_ms

    def set_status(self, status: PipelineStatus) -> None:
        logger.debug(f'Status -> {status.value}')
        if self.on_status is not None:
            self.on_status(status)

    def emit(self, level: str, message: str) -> None:
        """Send a concise user-facing message to the notification sink."""
        if self.notify is not None:
            self.notify(level, message)

    def set_injection(self, text: str) -> None:
        if self.inject is not None:
            self.inject(text)

    async def persist(self) -> None:
        if self.save is None:
            return
        result = self.save()
        if inspect.isawaitable(result):
            await result
