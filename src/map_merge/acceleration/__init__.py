"""
Acceleration Module

Process-pool execution of independent pairwise registrations.
"""

from .parallel_executor import PairParallelExecutor

__all__ = ["PairParallelExecutor"]
