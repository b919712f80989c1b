"""Read-only selectors."""

from supply_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
