"""Test utilities for switchyard applications.

    from switchyard.testing import TestClient
"""

from switchyard.testing.client import TestClient

__all__ = ["TestClient"]
