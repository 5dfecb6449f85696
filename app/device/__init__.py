"""
Device Integration Module
=========================

Device abstraction layer for the agent core.

This package contains:
    - interfaces: Abstract capture / UI tree / gesture / model collaborators
    - adb: Local Android emulator or USB device via ADB
"""

from app.device.adb import AdbBridge, AdbCaptureSession, AdbGestureSink, AdbUiTree
from app.device.interfaces import (
    Bounds,
    CaptureSession,
    GestureResult,
    GestureSink,
    RawFrame,
    UiNode,
    UiTree,
    VisionLanguageModel,
)

__all__ = [
    "AdbBridge",
    "AdbCaptureSession",
    "AdbGestureSink",
    "AdbUiTree",
    "Bounds",
    "CaptureSession",
    "GestureResult",
    "GestureSink",
    "RawFrame",
    "UiNode",
    "UiTree",
    "VisionLanguageModel",
]
