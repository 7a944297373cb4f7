"""
OAuth-signed NetSuite RESTlet client.

Every call is signed individually with OAuth 1.0a token-based
authentication (HMAC-SHA256) using a fresh nonce and timestamp. The client
makes exactly one attempt per call; retries belong to the caller.
"""

import asyncio
import json
import secrets
import time
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import requests
from oauthlib.oauth1 import SIGNATURE_HMAC_SHA256, Client

from ..config.loader import NetSuiteCredentials, RestletDeployment
from ..errors import NetworkError, RemoteError, RpcTimeoutError
from ..logging_config import get_logger

logger = get_logger("netsuite.client")

DEFAULT_TIMEOUT_MS = 30000

ParamValue = Optional[Any]


def _default_nonce() -> str:
    return secrets.token_hex(16)


class SignedRpcClient:
    """Authenticated RESTlet caller.

    Credentials are injected once at construction and never re-read.
    ``clock`` and ``nonce_factory`` exist so tests can pin signatures.
    """

    def __init__(
        self,
        credentials: NetSuiteCredentials,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], str] = _default_nonce,
    ):
        if credentials is None:
            raise ValueError("credentials are required")
        self.credentials = credentials
        self.session = session or requests.Session()
        self._clock = clock
        self._nonce_factory = nonce_factory

    def build_url(self, deployment: RestletDeployment, params: Optional[Mapping[str, ParamValue]] = None) -> str:
        """Build the RESTlet URL with script/deploy and non-None params."""
        parts = urlsplit(self.credentials.restlet_base_url)
        query = dict(parse_qsl(parts.query, keep_blank_values=True))
        query["script"] = deployment.script_id
        query["deploy"] = deployment.deploy_id
        for key, value in (params or {}).items():
            if value is not None:
                query[key] = str(value)
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query, quote_via=quote), ""))

    def authorization_header(self, method: str, url: str) -> str:
        """Compute a fresh OAuth header for one request.

        Args:
            method: HTTP method
            url: Full request URL including query string

        Returns:
            Value for the Authorization header
        """
        creds = self.credentials
        oauth = Client(
            creds.consumer_key,
            client_secret=creds.consumer_secret,
            resource_owner_key=creds.token_id,
            resource_owner_secret=creds.token_secret,
            signature_method=SIGNATURE_HMAC_SHA256,
            realm=creds.account_id,
            nonce=self._nonce_factory(),
            timestamp=str(int(self._clock())),
        )
        _, headers, _ = oauth.sign(url, http_method=method.upper())
        return headers["Authorization"]

    async def call(
        self,
        deployment: RestletDeployment,
        method: str,
        params: Optional[Mapping[str, ParamValue]] = None,
        body: Optional[Any] = None,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> Dict[str, Any]:
        """Make one signed request to a RESTlet.

        Args:
            deployment: RESTlet script/deploy identifiers
            method: GET, POST, PUT or DELETE
            params: Extra query parameters; None values are dropped
            body: JSON body, ignored for GET
            timeout_ms: Time allowed for the response to start arriving

        Returns:
            Parsed JSON response

        Raises:
            RemoteError: On non-2xx responses or unparseable bodies
            RpcTimeoutError: If the timeout elapses
            NetworkError: If the connection fails
        """
        method = method.upper()
        url = self.build_url(deployment, params)
        headers = {
            "Authorization": self.authorization_header(method, url),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        data = json.dumps(body) if body is not None and method != "GET" else None

        started = time.monotonic()
        response = await asyncio.to_thread(self._send, method, url, headers, data, timeout_ms)
        logger.debug(
            "RESTlet call completed",
            extra={
                "method": method,
                "script_id": deployment.script_id,
                "status": response.status_code,
                "elapsed_ms": int((time.monotonic() - started) * 1000),
            },
        )

        if not response.ok:
            raise RemoteError(response.status_code, f"{response.reason} - {response.text or 'Unknown error'}")

        try:
            return response.json()
        except ValueError:
            raise RemoteError(response.status_code, "Invalid JSON in RESTlet response")

    def _send(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[str],
        timeout_ms: int,
    ) -> requests.Response:
        try:
            return self.session.request(method, url, headers=headers, data=data, timeout=timeout_ms / 1000.0)
        except requests.exceptions.Timeout:
            raise RpcTimeoutError(timeout_ms, url)
        except requests.exceptions.ConnectionError as e:
            raise NetworkError(f"NetSuite connection failed: {e}", cause=e)
