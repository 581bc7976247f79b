"""Event finalizer: picks the date, the meeting station and nearby restaurants for an event."""

from .errors import (
    ConfigurationError, FinalizationInProgressError, FinalizerError, InputError,
    PersistenceError, ProviderDegraded,
)
from .orchestrator import FinalizationOrchestrator

__version__ = '0.1.0'
