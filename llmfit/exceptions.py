"""
Exceptions raised for malformed engine input
"""

from typing import Optional


class FitError(Exception):
    """Base class for llmfit errors"""


class InvalidModelError(FitError, ValueError):
    """Raised when a model descriptor violates the engine's preconditions.

    A model that simply does not fit the hardware is never an error; it is
    reported through a TooTight verdict instead.
    """

    def __init__(self, message: str, model_name: Optional[str] = None):
        self.model_name = model_name
        full_message = message
        if model_name:
            full_message += f" (model: {model_name})"
        super().__init__(full_message)


class InvalidHardwareError(FitError, ValueError):
    """Raised when a hardware descriptor is malformed"""


class CatalogError(FitError):
    """Raised when the model catalog cannot be loaded"""
