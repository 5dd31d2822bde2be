from .controller import BookmarkSyncController, SyncHandle, SyncView
from .gate import Navigator, SessionGate

__all__ = [
    "BookmarkSyncController",
    "Navigator",
    "SessionGate",
    "SyncHandle",
    "SyncView",
]
