"""
Test Suite

Structure:
- tests/unit/: Tests for individual components, with the network mocked

Uses pytest with pytest-asyncio for testing async functionality.
"""
