"""
Robust radio positioning examples.

This module provides example scripts for the radiopos positioning engine.

Examples:
    - Robust methods against a growing share of outlying ranges
    - Sequential ranging then RSSI positioning against RSSI-only positioning
"""

__version__ = "0.1.0"
