"""
Test Package
============

Unit and integration tests for the Screen Pilot Agent.

Test organization:
    - test_task_loop.py: Task loop outcomes, cancellation, progress
    - test_agent.py: Task state, decision client, action handler
    - test_action_parser.py: Reply parsing and the task prompt
    - test_capture.py: Frame capture coordination
    - test_perception.py: Element extraction and annotation
    - test_adb.py: ADB backend
    - test_llm_clients.py: Vision model clients
    - test_config.py: Settings sections and derived configs
    - test_runtime.py: ADB task runtime wiring
    - test_api.py: FastAPI endpoint tests

Run tests with:
    pytest tests/ -v
"""
