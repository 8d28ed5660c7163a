"""
GMV Decomposition

Month-over-month GMV change decomposition for e-commerce order data.
"""

__version__ = "1.0.0"
