"""Asynchronous status bar blocks reporting system, network and service information as widgets."""

__version__ = "0.1.0"