"""Integration tests for regauth.

These run the credential client end to end against in-process fake
registries; no external services are needed. Select them with
``pytest -m integration``.
"""
