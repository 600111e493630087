"""
Transaction Insights

Batch analytics over e-commerce purchase-line exports.
"""

__version__ = "1.0.0"
