"""Domain values and the platform capability port."""

from quest_archiver.domain.models import (
    ChatPage,
    FatQuestRecord,
    PlatformSession,
    SortMode,
    StorySummary,
    TargetDescriptor,
)
from quest_archiver.domain.ports import PlatformClient

__all__ = [
    "ChatPage",
    "FatQuestRecord",
    "PlatformClient",
    "PlatformSession",
    "SortMode",
    "StorySummary",
    "TargetDescriptor",
]
