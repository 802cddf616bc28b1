"""
Test Suite

Contains unit tests for the backend system.

Structure:
- tests/unit/: Tests for individual components (caches, stores, coalescer,
  mapping, history, scheduler, services, provider clients, routes)

Uses pytest with pytest-asyncio for testing async functionality.
Upstream providers are replaced by in-memory fakes; no test touches the network.
"""
