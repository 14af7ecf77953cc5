from .story_graph import StoryGraphService
from .ledger_service import BalanceLedger
from .progress_service import ProgressStore, ReaderIdentity
from .choice_service import ChoiceResolutionService
from .reader_service import ReaderService
from .session_bridge import GuestSessionBridge
from .story_loader import StoryLoader
from .user_service import UserService
from .guest_cache import GuestCache

__all__ = [
    "StoryGraphService",
    "BalanceLedger",
    "ProgressStore",
    "ReaderIdentity",
    "ChoiceResolutionService",
    "ReaderService",
    "GuestSessionBridge",
    "StoryLoader",
    "UserService",
    "GuestCache",
]
