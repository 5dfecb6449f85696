"""
Screen Pilot Agent
==================

Vision-language model driven automation for Android devices.

The agent captures the screen, labels the interactive elements, asks a
vision model which one to act on, and performs the chosen gesture until the
task is finished, cancelled, or the round budget runs out.

Modules:
    - agent: Task loop, prompts, decision client and action parser
    - capture: Frame capture coordination (single-flight, drain, fallback)
    - perception: Element extraction and screenshot annotation
    - device: Collaborator interfaces and the ADB implementations
    - llm: Vision model clients (OpenAI-compatible, Groq, Gemini)
    - api: FastAPI routes
    - utils: Logging
"""

__version__ = "1.0.0"
__author__ = "Screen Pilot Team"
