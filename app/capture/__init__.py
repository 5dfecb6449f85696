"""
Capture Module
==============

Frame capture coordination.

This package contains:
    - coordinator: Single-flight acquisition, stale-frame draining, teardown
    - strategies: Callback and polling frame retrieval
"""

from app.capture.coordinator import (
    CaptureConfig,
    CaptureCoordinator,
    CaptureError,
    CaptureResult,
    CaptureStatus,
    Frame,
)
from app.capture.strategies import CallbackStrategy, FrameRetrievalStrategy, PollingStrategy

__all__ = [
    "CaptureConfig",
    "CaptureCoordinator",
    "CaptureError",
    "CaptureResult",
    "CaptureStatus",
    "Frame",
    "CallbackStrategy",
    "FrameRetrievalStrategy",
    "PollingStrategy",
]
