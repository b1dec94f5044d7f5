"""
Error types for Image Transformer
"""


class ImageTransformerError(Exception):
    """Base class for all application errors"""


class ConfigurationError(ImageTransformerError):
    """Required settings are missing; the process must not start"""


class InvalidInputError(ImageTransformerError):
    """Input rejected before any network call (no file, too large, wrong type)"""


class RunInProgressError(InvalidInputError):
    """A run is already in flight for this controller"""


class RemoteFailureError(ImageTransformerError):
    """The workflow service reported failure or returned an unusable response"""


class RemoteTimeoutError(RemoteFailureError):
    """The run did not finish before the wait deadline"""


class CancelFailureError(ImageTransformerError):
    """The cancel request itself failed"""
