"""
Shipway API Client

Order-management and serviceability endpoints used by the fulfillment core:
- Pincode serviceability
- Order push (create / update, with or without label generation)
- Order listing (used to verify remote writes)
- Manifest creation
- Shipment cancellation by AWB
- Carrier listing

Every non-2xx response, network error, timeout or unsuccessful body raises
ShipwayAPIError. Response bodies are never logged in full and the
Authorization header is never logged.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from fulfillment.core.config import settings
from fulfillment.core.exceptions import ShipwayAPIError, MalformedCarrierResponseError

logger = logging.getLogger(__name__)

# API endpoints (relative to SHIPWAY_API_BASE_URL)
PINCODE_SERVICEABLE_PATH = "/pincodeserviceable"
PUSH_ORDER_PATH = "/v2orders"
GET_ORDERS_PATH = "/getorders"
CREATE_MANIFEST_PATH = "/Createmanifest/"
CANCEL_SHIPMENT_PATH = "/Cancel/"
GET_CARRIERS_PATH = "/getcarrier"

# Keys observed for label URL / AWB across label-generation response versions
_URL_KEYS = ("shipping_url", "label_url", "shippingUrl", "label")
_AWB_KEYS = ("AWB", "awb", "awb_number", "awbno", "awb_no")
_CARRIER_ID_KEYS = ("carrier_id", "courier_id")
_CARRIER_NAME_KEYS = ("carrier_name", "courier_name", "carrier")
_NESTED_KEYS = ("awb_response", "data", "response", "result")


@dataclass
class ServiceableCarrier:
    """One carrier returned by the pincode serviceability check."""
    carrier_id: str
    name: str
    payment_type: str


@dataclass
class LabelResponse:
    """Canonical label-generation result, whatever shape the API answered with."""
    shipping_url: Optional[str]
    awb: Optional[str]
    carrier_id: Optional[str] = None
    carrier_name: Optional[str] = None
    raw_response: Dict = field(default_factory=dict, repr=False)

    @property
    def has_url(self) -> bool:
        return bool(self.shipping_url)


def is_success(body: Any) -> bool:
    """The API signals success with success=1/true (sometimes as a string)."""
    if not isinstance(body, dict):
        return False
    flag = body.get("success")
    if isinstance(flag, str):
        return flag.strip().lower() in ("1", "true", "success")
    return flag is True or flag == 1


def _first_str(source: Dict, keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = source.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        value = str(value).strip()
        if value and value.lower() not in ("null", "undefined"):
            return value
    return None


def _candidates(body: Dict) -> List[Dict]:
    """The body itself plus every nested dict (or first list element) that may carry the label."""
    found = [body]
    for key in _NESTED_KEYS:
        nested = body.get(key)
        if isinstance(nested, list) and nested and isinstance(nested[0], dict):
            nested = nested[0]
        if isinstance(nested, dict):
            found.extend(_candidates(nested))
    return found


def parse_label_response(body: Any) -> LabelResponse:
    """
    Extract shipping URL, AWB and carrier from a label-generation response.

    Raises MalformedCarrierResponseError when neither a URL nor an AWB is present.
    """
    if not isinstance(body, dict):
        raise MalformedCarrierResponseError(
            "Label response is not a JSON object",
            details={"type": type(body).__name__},
        )

    shipping_url = awb = carrier_id = carrier_name = None
    for candidate in _candidates(body):
        shipping_url = shipping_url or _first_str(candidate, _URL_KEYS)
        awb = awb or _first_str(candidate, _AWB_KEYS)
        carrier_id = carrier_id or _first_str(candidate, _CARRIER_ID_KEYS)
        carrier_name = carrier_name or _first_str(candidate, _CARRIER_NAME_KEYS)

    if not shipping_url and not awb:
        raise MalformedCarrierResponseError(
            "Label response contained neither a shipping URL nor an AWB",
            details={"keys": sorted(body.keys())},
        )

    return LabelResponse(
        shipping_url=shipping_url,
        awb=awb,
        carrier_id=carrier_id,
        carrier_name=carrier_name,
        raw_response=body,
    )


def error_message_from(body: Any, default: str) -> str:
    """Human-readable reason from an unsuccessful body."""
    if isinstance(body, dict):
        for key in ("message", "error", "msg"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return default


class ShipwayClient:
    """
    Shipway API client.

    Constructed explicitly and injected into the services that need it; owns
    one lazily created httpx.AsyncClient.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        auth_header: Optional[str] = None,
        timeout: Optional[float] = None,
        serviceability_timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.SHIPWAY_API_BASE_URL).rstrip("/")
        self.auth_header = auth_header if auth_header is not None else settings.SHIPWAY_BASIC_AUTH_HEADER
        self.timeout = timeout or settings.SHIPWAY_TIMEOUT_SECONDS
        self.serviceability_timeout = serviceability_timeout or settings.SERVICEABILITY_TIMEOUT_SECONDS
        self._http_client: Optional[httpx.AsyncClient] = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _make_request(
        self,
        method: str,
        path: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        timeout: Optional[float] = None,
        require_success: bool = True,
    ) -> Dict:
        """Make authenticated API request and return the decoded body."""
        client = await self._get_http_client()
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": self.auth_header,
            "Content-Type": "application/json",
        }

        try:
            if method.upper() == "GET":
                response = await client.get(url, headers=headers, params=params, timeout=timeout or self.timeout)
            elif method.upper() == "POST":
                response = await client.post(url, headers=headers, json=data, timeout=timeout or self.timeout)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.TimeoutException as e:
            logger.error(f"Shipway {method} {path} timed out: {e}")
            raise ShipwayAPIError(f"Shipway request timed out: {path}", endpoint=path)
        except httpx.RequestError as e:
            logger.error(f"Shipway {method} {path} request failed: {e}")
            raise ShipwayAPIError(f"Network error calling Shipway: {e}", endpoint=path)

        logger.debug(f"Shipway {method} {path} -> {response.status_code}")

        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text[:500]}

        if response.status_code >= 400:
            message = error_message_from(body, f"Shipway API error (HTTP {response.status_code})")
            logger.error(f"Shipway {method} {path} failed: {response.status_code} - {message}")
            raise ShipwayAPIError(message, http_status=response.status_code, endpoint=path)

        if require_success and not is_success(body):
            message = error_message_from(body, "Shipway reported an unsuccessful response")
            logger.error(f"Shipway {method} {path} unsuccessful: {message}")
            raise ShipwayAPIError(message, http_status=response.status_code, endpoint=path)

        return body

    # ==================== Serviceability ====================

    async def check_pincode(self, pincode: str) -> List[ServiceableCarrier]:
        """Carriers that deliver to a pincode, one entry per carrier and payment type."""
        body = await self._make_request(
            "GET",
            PINCODE_SERVICEABLE_PATH,
            params={"pincode": pincode},
            timeout=self.serviceability_timeout,
        )

        entries = body.get("message")
        if not isinstance(entries, list):
            raise ShipwayAPIError(
                f"Unexpected serviceability response for pincode {pincode}",
                endpoint=PINCODE_SERVICEABLE_PATH,
            )

        carriers = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("carrier_id") in (None, ""):
                continue
            carriers.append(ServiceableCarrier(
                carrier_id=str(entry["carrier_id"]),
                name=str(entry.get("name") or ""),
                payment_type=str(entry.get("payment_type") or ""),
            ))

        logger.info(f"Pincode {pincode}: {len(carriers)} serviceable carrier entries")
        return carriers

    # ==================== Orders ====================

    async def push_order(
        self,
        payload: Dict,
        generate_label: bool = False,
        carrier_id: Optional[str] = None,
        warehouse_id: Optional[str] = None,
    ) -> Dict:
        """
        Create or update an order (same endpoint, keyed by order_id).

        With generate_label the carrier and warehouse are required and the raw
        body is returned for parse_label_response.
        """
        body = dict(payload)
        if generate_label:
            if not carrier_id or not warehouse_id:
                raise ValueError("carrier_id and warehouse_id are required to generate a label")
            body.update({
                "carrier_id": str(carrier_id),
                "warehouse_id": str(warehouse_id),
                "return_warehouse_id": str(warehouse_id),
                "generate_label": "1",
            })

        logger.info(
            f"Pushing order {body.get('order_id')} to Shipway "
            f"({len(body.get('products') or [])} products, generate_label={generate_label})"
        )
        return await self._make_request("POST", PUSH_ORDER_PATH, data=body)

    async def get_orders(self, order_id: Optional[str] = None) -> List[Dict]:
        """List remote orders, optionally narrowed to one order id."""
        params = {"order_id": order_id} if order_id else None
        body = await self._make_request("GET", GET_ORDERS_PATH, params=params)

        orders = body.get("message")
        if not isinstance(orders, list):
            return []
        orders = [o for o in orders if isinstance(o, dict)]
        if order_id:
            orders = [o for o in orders if str(o.get("order_id")) == str(order_id)]
        return orders

    async def get_order(self, order_id: str) -> Optional[Dict]:
        orders = await self.get_orders(order_id)
        return orders[0] if orders else None

    async def order_exists(self, order_id: str) -> bool:
        return await self.get_order(order_id) is not None

    # ==================== Manifest / Cancel ====================

    async def create_manifest(self, order_ids: Sequence[str]) -> Dict:
        logger.info(f"Creating Shipway manifest for {len(order_ids)} order(s)")
        return await self._make_request(
            "POST",
            CREATE_MANIFEST_PATH,
            data={"order_ids": [str(o) for o in order_ids]},
        )

    async def cancel_shipment(self, awbs: Sequence[str]) -> Dict:
        logger.info(f"Cancelling {len(awbs)} shipment(s) on Shipway")
        return await self._make_request(
            "POST",
            CANCEL_SHIPMENT_PATH,
            data={"awb_number": [str(a) for a in awbs]},
        )

    # ==================== Carriers ====================

    async def list_carriers(self) -> List[Dict]:
        body = await self._make_request("GET", GET_CARRIERS_PATH)
        carriers = body.get("message")
        if isinstance(carriers, dict):
            carriers = list(carriers.values())
        if not isinstance(carriers, list):
            return []
        return [c for c in carriers if isinstance(c, dict)]


def create_shipway_client() -> ShipwayClient:
    """Client configured from settings."""
    return ShipwayClient()
