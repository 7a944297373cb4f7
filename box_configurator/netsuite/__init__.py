"""
NetSuite integration.

Provides the OAuth-signed RESTlet client and the estimate gateway built
on top of it.
"""

from .client import SignedRpcClient
from .gateway import EstimateGateway, LiveNetSuiteGateway, MockNetSuiteGateway, build_gateway

__all__ = [
    "SignedRpcClient",
    "EstimateGateway",
    "LiveNetSuiteGateway",
    "MockNetSuiteGateway",
    "build_gateway",
]
