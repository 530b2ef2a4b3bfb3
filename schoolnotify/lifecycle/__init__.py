"""Process lifecycle for the delivery worker."""

from .signals import SignalHandler

__all__ = ["SignalHandler"]
