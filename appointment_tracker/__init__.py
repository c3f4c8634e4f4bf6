"""REAL ID appointment tracker package."""

from .config import ConfigError, Settings
from .extractor import Extractor
from .fetcher import FetchError, Fetcher
from .models import UNKNOWN, Observation, Target, TargetSite, Transition
from .notifier import EmailNotifier
from .scheduler import Scheduler
from .store import AppointmentStore
from .tracker import AppointmentTracker

__all__ = [
    "AppointmentStore",
    "AppointmentTracker",
    "ConfigError",
    "EmailNotifier",
    "Extractor",
    "FetchError",
    "Fetcher",
    "Observation",
    "Scheduler",
    "Settings",
    "Target",
    "TargetSite",
    "Transition",
    "UNKNOWN",
]
