"""
Estimate gateway: the NetSuite capability used by the services.

Two variants share one interface. The live gateway calls RESTlets through
the signed client wrapped in the retry policy; the mock gateway serves a
small in-memory catalog for local development. The variant is chosen once
by ``build_gateway`` and never branched on afterwards.
"""

import asyncio
import random
from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..config.loader import NetSuiteConfig, Settings
from ..core.retry import RetryPolicy, with_retry
from ..errors import RemoteError
from ..logging_config import get_logger
from .client import SignedRpcClient

logger = get_logger("netsuite.gateway")

SEARCH_TIMEOUT_MS = 30000
GET_ITEM_TIMEOUT_MS = 15000
GET_ESTIMATE_TIMEOUT_MS = 30000
WRITE_TIMEOUT_MS = 60000


class EstimateGateway(ABC):
    """NetSuite operations needed by the configurator."""

    @abstractmethod
    async def search_items(self, query: str, limit: int = 25, offset: int = 0) -> Dict[str, Any]:
        """Search items by part number, name or manufacturer."""

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Fetch one item by internal id or part number, None if unknown."""

    @abstractmethod
    async def get_estimate(self, estimate_id: str) -> Dict[str, Any]:
        """Fetch estimate and customer data."""

    @abstractmethod
    async def write_estimate_lines(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Write configured lines to an estimate."""


class LiveNetSuiteGateway(EstimateGateway):
    """Gateway backed by real RESTlet calls."""

    def __init__(
        self,
        client: SignedRpcClient,
        config: NetSuiteConfig,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.client = client
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    async def _request(self, deployment_name: str, method: str, **kwargs: Any) -> Dict[str, Any]:
        deployment = self.config.deployment(deployment_name)
        return await with_retry(
            lambda: self.client.call(deployment, method, **kwargs),
            policy=self.retry_policy,
            sleep=self._sleep,
            rng=self._rng,
        )

    async def search_items(self, query: str, limit: int = 25, offset: int = 0) -> Dict[str, Any]:
        return await self._request(
            "item_search", "GET",
            params={"q": query, "limit": limit, "offset": offset},
            timeout_ms=SEARCH_TIMEOUT_MS,
        )

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        try:
            return await self._request(
                "item_search", "GET",
                params={"id": item_id},
                timeout_ms=GET_ITEM_TIMEOUT_MS,
            )
        except RemoteError as e:
            if e.status == 404:
                return None
            raise

    async def get_estimate(self, estimate_id: str) -> Dict[str, Any]:
        return await self._request(
            "data_fetch", "GET",
            params={"estimateId": estimate_id},
            timeout_ms=GET_ESTIMATE_TIMEOUT_MS,
        )

    async def write_estimate_lines(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Write lines to an estimate.

        The RESTlet deduplicates on ``idempotencyKey``, so a retried write
        that already landed returns success without re-inserting lines.

        Raises:
            RemoteError: If the RESTlet fails or reports ``success: false``
        """
        result = await self._request(
            "estimate_writer", "POST",
            body=payload,
            timeout_ms=WRITE_TIMEOUT_MS,
        )
        if result.get("success") is False:
            # Reported rejection is permanent, same as a 4xx
            raise RemoteError(422, result.get("error") or "Estimate write rejected")
        return result


# Subset of the development catalog
MOCK_ITEMS: List[Dict[str, Any]] = [
    {
        "internalId": "1001", "itemId": "0-102023",
        "displayName": "PowerG 2-Way Door/Window Contact Transmitter",
        "description": "PowerG 2-Way Door/Window Contact Transmitter with second Hardwired Input",
        "manufacturer": "Visonic Americas", "itemType": "inventoryItem", "isActive": True,
        "cost": 57.63, "basePrice": 82.33, "quantityAvailable": 150,
    },
    {
        "internalId": "1002", "itemId": "0-103045",
        "displayName": "PowerG Wireless Motion Detector",
        "description": "PowerG Wireless PIR Motion Detector with Anti-Mask",
        "manufacturer": "Visonic Americas", "itemType": "inventoryItem", "isActive": True,
        "cost": 42.15, "basePrice": 60.21, "quantityAvailable": 200,
    },
    {
        "internalId": "1005", "itemId": "HS2016NK",
        "displayName": "PowerSeries Neo 16-Zone Alarm Panel",
        "description": "PowerSeries Neo 6 to 16-Zone Alarm Control Panel",
        "manufacturer": "DSC", "itemType": "inventoryItem", "isActive": True,
        "cost": 125.00, "basePrice": 178.57, "quantityAvailable": 30,
    },
    {
        "internalId": "1006", "itemId": "CAB-CAT6-100",
        "displayName": "CAT6 Cable 100ft",
        "description": "Category 6 Ethernet Cable, 100 feet, Blue",
        "manufacturer": "Generic", "itemType": "nonInventoryItem", "isActive": True,
        "cost": 15.50, "basePrice": 22.14, "quantityAvailable": 500,
    },
    {
        "internalId": "2001", "itemId": "AC-RDR-PROX",
        "displayName": "Proximity Card Reader",
        "description": "Mullion-mount proximity card reader, 125kHz, Wiegand output",
        "manufacturer": "HID Global", "itemType": "inventoryItem", "isActive": True,
        "cost": 85.00, "basePrice": 121.43, "quantityAvailable": 75,
    },
    {
        "internalId": "3001", "itemId": "CAM-DOME-4MP",
        "displayName": "4MP Indoor Dome Camera",
        "description": "4MP PoE dome camera with IR night vision, 2.8mm lens",
        "manufacturer": "Axis Communications", "itemType": "inventoryItem", "isActive": True,
        "cost": 275.00, "basePrice": 392.86, "quantityAvailable": 60,
    },
    {
        "internalId": "5001", "itemId": "LIC-VMS-CAM",
        "displayName": "VMS Camera License",
        "description": "Video management software license, per camera, perpetual",
        "manufacturer": "Milestone", "itemType": "nonInventoryItem", "isActive": True,
        "cost": 125.00, "basePrice": 178.57,
    },
    {
        "internalId": "1007", "itemId": "SVC-INSTALL-HR",
        "displayName": "Installation Service - Per Hour",
        "description": "Professional installation service, billed per hour",
        "manufacturer": "", "itemType": "serviceItem", "isActive": True,
        "cost": 45.00, "basePrice": 85.00,
    },
]

MOCK_CUSTOMER: Dict[str, Any] = {
    "internalId": "5001",
    "name": "Acme Security Solutions",
    "email": "purchasing@acmesecurity.com",
    "phone": "(555) 123-4567",
}


class MockNetSuiteGateway(EstimateGateway):
    """In-memory gateway for local development and tests.

    Writes are recorded in ``writes`` and always succeed.
    """

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        self.items = list(MOCK_ITEMS if items is None else items)
        self.writes: List[Dict[str, Any]] = []

    async def search_items(self, query: str, limit: int = 25, offset: int = 0) -> Dict[str, Any]:
        q = query.lower()
        matches = [
            item for item in self.items
            if any(q in str(item.get(key, "")).lower()
                   for key in ("itemId", "displayName", "description", "manufacturer"))
        ]
        return {
            "items": matches[offset:offset + limit],
            "total": len(matches),
            "hasMore": offset + limit < len(matches),
        }

    async def get_item(self, item_id: str) -> Optional[Dict[str, Any]]:
        for item in self.items:
            if item["internalId"] == item_id or item["itemId"] == item_id:
                return item
        return None

    async def get_estimate(self, estimate_id: str) -> Dict[str, Any]:
        return {
            "estimate": {
                "internalId": estimate_id,
                "tranId": "EST-00456",
                "status": "Open",
                "salesRep": "John Smith",
                "salesRepEmail": "jsmith@company.com",
                "tranDate": date.today().isoformat(),
            },
            "customer": dict(MOCK_CUSTOMER),
        }

    async def write_estimate_lines(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.writes.append(payload)
        logger.info(
            "Mock estimate write",
            extra={"estimate_id": payload["estimateId"], "idempotency_key": payload["idempotencyKey"]},
        )
        return {
            "success": True,
            "estimateId": payload["estimateId"],
            "lineCount": len(payload["lines"]),
            "warnings": [],
            "idempotencyKey": payload["idempotencyKey"],
        }


def build_gateway(settings: Settings, session=None) -> EstimateGateway:
    """Choose the gateway variant once, from settings.

    Args:
        settings: Loaded application settings
        session: Optional requests session for the live client

    Returns:
        MockNetSuiteGateway in mock mode, otherwise LiveNetSuiteGateway
    """
    if settings.netsuite.mock:
        logger.info("NetSuite mock mode enabled")
        return MockNetSuiteGateway()
    client = SignedRpcClient(settings.netsuite.credentials, session=session)
    return LiveNetSuiteGateway(client, settings.netsuite, retry_policy=settings.retry)
