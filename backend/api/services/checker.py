"""
Shared checker instance for the HTTP process.

The scheduler (fabric_checker.main) and the API routes use the same
FabricStockChecker so runs never overlap and the last-run time is shared.
"""

from fabric_checker import FabricStockChecker


# Global checker instance
checker = FabricStockChecker()


def get_checker() -> FabricStockChecker:
    """Dependency for FastAPI routes to get the shared checker."""
    return checker
