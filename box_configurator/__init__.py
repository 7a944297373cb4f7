"""
Box Sale Configurator core.

Pricing calculations and idempotent NetSuite estimate submission.
"""

__version__ = "0.1.0"
