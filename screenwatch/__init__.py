"""screenwatch - camera-driven screen-time and bedtime enforcement."""

__version__ = "0.1.0"
