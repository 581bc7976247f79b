"""Error taxonomy for event finalization.

Only ConfigurationError, InputError and PersistenceError (with its
subclass) ever reach the caller. ProviderDegraded is raised by the provider
adapters and converted into a fallback value by the component that called
them.
"""


class FinalizerError(Exception):
    """Base class for every error raised by the finalizer"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.message,
            'error_type': type(self).__name__,
        }


class ConfigurationError(FinalizerError):
    """Provider credentials or settings are missing or invalid"""


class InputError(FinalizerError):
    """The event cannot be finalized with the data on record"""


class ProviderDegraded(FinalizerError):
    """An upstream provider failed or answered with something unusable"""


class PersistenceError(FinalizerError):
    """The finalized result could not be written"""


class FinalizationInProgressError(PersistenceError):
    """Another finalization currently holds the event"""
