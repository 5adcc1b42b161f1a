"""Robust radio positioning from ranging and RSSI readings.

This package contains the reusable components of the positioning engine:
- rf: Path-loss model and lateration solvers
- estimators: Nonlinear least squares and RANSAC-family primitives
- positioning: Reading types, sorter and robust position estimators
"""

__version__ = "0.1.0"
