"""
Root pytest configuration.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line(
        "markers",
        "critical: Tests that must never fail - core functionality",
    )
    config.addinivalue_line(
        "markers",
        "security: Security-critical tests (tamper detection, durability)",
    )
    config.addinivalue_line(
        "markers",
        "integration: Tests exercising the file-backed store end to end",
    )
    config.addinivalue_line(
        "markers",
        "property: Property-based tests (may be slow)",
    )


@pytest.fixture(autouse=True)
def reset_diagnostics() -> Generator[None, None, None]:
    """Reset the diagnostics writer and cached enable flag around each test."""
    import auditchain.core.diagnostics as diag

    diag._reset_for_tests()
    yield
    diag._reset_for_tests()


@pytest.fixture
def captured_diagnostics() -> Generator[list[dict], None, None]:
    """Enable diagnostics and capture every emitted payload."""
    import auditchain.core.diagnostics as diag

    captured: list[dict] = []
    diag.enable_for_tests(True)
    diag.set_writer_for_tests(captured.append)
    yield captured
