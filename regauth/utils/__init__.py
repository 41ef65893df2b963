"""Utility modules for the credential client.

Key Components:
    - logging_config: Structured logging setup with structlog
    - async_subprocess: Non-blocking subprocess execution for credential helpers
"""
