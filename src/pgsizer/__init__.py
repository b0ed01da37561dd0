"""
pgsizer - Resource-aware PostgreSQL configuration sizing.

Turns host resources (RAM, CPU cores) and a workload/storage profile
into a deterministic set of PostgreSQL tuning parameters.
"""

__version__ = "1.0.0"
__author__ = "pgsizer maintainers"
