"""Account closure and support ticket workflows for the back office."""

__version__ = "0.1.0"
