"""
Core modules for the Box Sale Configurator.

This package contains the pure pricing calculations and the generic
retry policy used by the NetSuite gateway.
"""
