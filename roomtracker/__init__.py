"""Room presence tracker: sweeps the platform's room list and records user sessions."""

__version__ = "1.0.0"

from .config import TrackerConfig
from .errors import StoreUnavailableError, SweepTimeoutError, TrackerError, TransportError
from .fetcher import PlatformFetcher
from .index import OpenSessionIndex
from .merge import merge_profile
from .normalizer import HtmlCapture, JsonCapture, RoomSnapshot, UserObservation, normalize
from .poller import TrackerPoller
from .reconciler import SessionReconciler
from .rooms import RoomStateUpserter
from .store import TrackerStore
from .sweep import SweepRunner

__all__ = [
    "TrackerConfig",
    "TrackerError",
    "TransportError",
    "StoreUnavailableError",
    "SweepTimeoutError",
    "PlatformFetcher",
    "OpenSessionIndex",
    "merge_profile",
    "HtmlCapture",
    "JsonCapture",
    "RoomSnapshot",
    "UserObservation",
    "normalize",
    "TrackerPoller",
    "SessionReconciler",
    "RoomStateUpserter",
    "TrackerStore",
    "SweepRunner",
]
