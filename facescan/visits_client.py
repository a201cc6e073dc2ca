"""
API Client for the visitor-management website.

Used by the CLI shell only: the scan engine itself never talks to the
network. Two calls matter to the scanner:

    GET /api/visits/{qrCode}        -> visit + visitor id card (reference image)
    PUT /api/visits/verify/{visitId} -> mark the visit as face-verified

Both routes require a logged-in security user, so requests carry the
next-auth session cookie.
"""

import logging
import requests
from typing import Any, Dict, Optional
from dataclasses import dataclass, field

from . import config as cfg
from .frame_capture import StillImage, decode_image

logger = logging.getLogger(__name__)

SESSION_COOKIE = "next-auth.session-token"


@dataclass
class APIResponse:
    """Response from the API"""
    success: bool
    message: str
    status_code: Optional[int] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class VisitRecord:
    """The parts of a visit the scanner needs."""
    visit_id: int
    visitor_name: str
    verified: bool
    id_card: Optional[StillImage] = None


class VisitsAPI:
    """
    Client for the visits routes of the website.

    Usage:
        api = VisitsAPI(base_url="http://localhost:3000", session_token="...")

        visit = api.get_visit("QR-123")
        if visit and visit.id_card is not None:
            ...  # verify the visitor against visit.id_card
            api.mark_verified(visit.visit_id)
    """

    def __init__(
        self,
        base_url: str = cfg.API_BASE_URL,
        session_token: str = cfg.API_SESSION_TOKEN,
        timeout: int = cfg.API_TIMEOUT_SEC
    ):
        self.base_url = base_url.rstrip("/")
        self.session_token = session_token
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for API requests"""
        return {"Content-Type": "application/json"}

    def _get_cookies(self) -> Dict[str, str]:
        if not self.session_token:
            return {}
        return {SESSION_COOKIE: self.session_token}

    def _request(self, method: str, path: str) -> APIResponse:
        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=self._get_headers(),
                cookies=self._get_cookies(),
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            return APIResponse(success=False, message="Request timed out")
        except requests.exceptions.ConnectionError:
            return APIResponse(success=False, message="Could not connect to server")
        except requests.exceptions.RequestException as e:
            return APIResponse(success=False, message=str(e))

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if response.status_code >= 400:
            message = data.get("error") or data.get("message") or f"HTTP {response.status_code}"
            return APIResponse(success=False, message=message, status_code=response.status_code, data=data)

        return APIResponse(success=True, message="OK", status_code=response.status_code, data=data)

    def health_check(self) -> bool:
        """
        Check if the website is reachable.

        Returns:
            True if the server answered, False otherwise
        """
        try:
            response = requests.get(self.base_url, timeout=self.timeout)
            return response.status_code < 500
        except requests.exceptions.RequestException as e:
            logger.warning(f"Health check failed: {e}")
            return False

    def get_visit(self, qr_code: str) -> Optional[VisitRecord]:
        """
        Look up a visit by its QR code.

        Returns:
            VisitRecord, or None if the visit does not exist or the call failed.
            id_card is None when the visitor has no usable id card image.
        """
        response = self._request("GET", f"/api/visits/{qr_code}")
        if not response.success:
            logger.error(f"Visit lookup for {qr_code} failed: {response.message}")
            return None

        data = response.data
        if "visit_id" not in data:
            logger.error(f"Visit lookup for {qr_code} returned no visit_id")
            return None

        id_card = None
        raw_card = data.get("id_card")
        if raw_card:
            try:
                id_card = decode_image(raw_card)
            except (ValueError, TypeError) as e:
                logger.warning(f"Visit {data.get('visit_id')}: id card could not be decoded: {e}")

        return VisitRecord(
            visit_id=int(data["visit_id"]),
            visitor_name=data.get("visitor_name") or "-",
            verified=bool(data.get("verification_status", False)),
            id_card=id_card,
        )

    def mark_verified(self, visit_id: int) -> APIResponse:
        """Mark a visit as verified by the logged-in security user."""
        response = self._request("PUT", f"/api/visits/verify/{visit_id}")
        if response.success:
            logger.info(f"Visit {visit_id} marked as verified")
        else:
            logger.error(f"Could not mark visit {visit_id} verified: {response.message}")
        return response
