"""Frame sources feeding the capture cadence."""

from screenwatch.sensors.directory import DirectoryConfig, DirectoryFrameSource, FrameSource

__all__ = ["DirectoryConfig", "DirectoryFrameSource", "FrameSource"]
