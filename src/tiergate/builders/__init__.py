"""Builders that turn connection state and probe results into response models."""

from .response_builders import DbStatusResultBuilder, LivenessResultBuilder

__all__ = [
    "DbStatusResultBuilder",
    "LivenessResultBuilder",
]
