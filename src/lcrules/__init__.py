"""lcrules - manage inclusion and exclusion filters for Android logcat."""

__version__ = "0.1.0"
