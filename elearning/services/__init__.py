"""
Services module for the e-learning chat backend.
"""

from .realtime import ConnectionRegistry, registry, push_to_participants

__all__ = [
    "ConnectionRegistry",
    "registry",
    "push_to_participants",
]
