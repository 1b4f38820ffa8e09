"""
Exception hierarchy for screenwatch.
"""


class ScreenwatchError(Exception):
    """Base exception for all screenwatch errors."""
    pass


class ClassifierUnavailableError(ScreenwatchError):
    """Raised when monitoring is started but the classifier never loaded."""
    pass


class CaptureError(ScreenwatchError):
    """Raised when the sensor fails to produce a frame."""
    pass


class ClassificationError(ScreenwatchError):
    """Raised when the classifier fails on a single frame."""
    pass


class ConfigError(ScreenwatchError):
    """Raised when a configuration value cannot be used."""
    pass
