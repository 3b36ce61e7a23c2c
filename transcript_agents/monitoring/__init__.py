"""Performance monitoring."""

from .performance import PerformanceMonitor, percentile

__all__ = ["PerformanceMonitor", "percentile"]
