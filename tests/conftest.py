"""Root conftest — shared pytest markers.

Markers
-------
unit        fast, no network (may spawn a local git)
slow        expected to take > 5 seconds
"""

from __future__ import annotations


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests, no network")
    config.addinivalue_line("markers", "slow: test is expected to take > 5 s")
