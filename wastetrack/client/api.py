"""
WasteTrack API client.
Holds the session state and wraps every backend call.
"""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..config import settings
from .session import (
    ANONYMOUS,
    ProfileLoaded,
    SessionEvent,
    SessionExpired,
    SessionState,
    SignedOut,
    SignInFailed,
    SignInStarted,
    SignInSucceeded,
    TokenRefreshed,
    reduce,
)

logger = structlog.get_logger(__name__)

SESSION_EXPIRED_DETAIL = "Session expired"


class RemoteCallError(Exception):
    """A backend call failed. ``detail`` is the backend's message, unchanged."""

    def __init__(self, detail: str, status_code: Optional[int] = None, operation: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code
        self.operation = operation


class SessionExpiredError(RemoteCallError):
    """No active session, or the backend reported the session as expired."""


class WasteTrackClient:
    """Client for the WasteTrack API"""

    def __init__(self, base_url: Optional[str] = None, http: Optional[httpx.Client] = None, timeout: float = 30.0):
        # any httpx.Client works, including FastAPI's TestClient
        self._http = http or httpx.Client(base_url=base_url or settings.public_base_url, timeout=timeout)
        self.state: SessionState = ANONYMOUS

    def dispatch(self, event: SessionEvent) -> SessionState:
        previous = self.state.status
        self.state = reduce(self.state, event)
        if self.state.status != previous:
            logger.info("session_transition", previous=previous.value, status=self.state.status.value)
        return self.state

    @property
    def profile(self) -> Optional[dict]:
        return self.state.profile

    # ---- transport ------------------------------------------------------

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict) and "detail" in body:
            detail = body["detail"]
            return detail if isinstance(detail, str) else str(detail)
        return str(body)

    def _send(self, operation: str, method: str, path: str, token: Optional[str] = None, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._http.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("remote_call_failed", operation=operation, error=str(e))
            raise RemoteCallError(str(e), operation=operation)
        if response.status_code >= 400:
            detail = self._detail(response)
            logger.warning("remote_call_failed", operation=operation, status=response.status_code, detail=detail)
            if response.status_code == 401 and detail == SESSION_EXPIRED_DETAIL:
                self.dispatch(SessionExpired())
                raise SessionExpiredError(detail, 401, operation)
            raise RemoteCallError(detail, response.status_code, operation)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _call(self, operation: str, method: str, path: str, **kwargs) -> Any:
        """Authenticated call; refuses to go out without an active session."""
        if not self.state.is_active:
            logger.warning("remote_call_without_session", operation=operation, status=self.state.status.value)
            raise SessionExpiredError(SESSION_EXPIRED_DETAIL, None, operation)
        return self._send(operation, method, path, token=self.state.access_token, **kwargs)

    # ---- session --------------------------------------------------------

    def sign_in(self, email: str, password: str) -> SessionState:
        self.dispatch(SignInStarted(email))
        try:
            tokens = self._send("sign_in", "POST", "/auth/sign-in", json={"email": email, "password": password})
            profile = self._send("me", "GET", "/auth/me", token=tokens["access_token"])
        except RemoteCallError as e:
            self.dispatch(SignInFailed(e.detail))
            raise
        return self.dispatch(SignInSucceeded(profile, tokens["access_token"], tokens.get("refresh_token")))

    def refresh_session(self) -> SessionState:
        if not self.state.refresh_token:
            raise SessionExpiredError(SESSION_EXPIRED_DETAIL, None, "refresh")
        tokens = self._send("refresh", "POST", "/auth/refresh", json={"refresh_token": self.state.refresh_token})
        return self.dispatch(TokenRefreshed(tokens["access_token"], tokens.get("refresh_token")))

    def reload_profile(self) -> dict:
        profile = self._call("me", "GET", "/auth/me")
        self.dispatch(ProfileLoaded(profile))
        return profile

    def sign_out(self) -> SessionState:
        if self.state.is_active:
            try:
                self._call("sign_out", "POST", "/auth/sign-out")
            except RemoteCallError:
                # the local session ends regardless
                pass
        return self.dispatch(SignedOut())

    # ---- procedures -----------------------------------------------------

    def get_company_shipments(self, company_type: Optional[str] = None, **filters) -> List[dict]:
        params = {k: v for k, v in dict(filters, company_type=company_type).items() if v is not None} or None
        return self._call("get_company_shipments", "GET", "/shipments/company", params=params)

    def get_driver_shipments(self) -> List[dict]:
        return self._call("get_driver_shipments", "GET", "/shipments/driver")

    def get_active_drivers(self) -> List[dict]:
        return self._call("get_active_drivers", "GET", "/drivers/active")

    def get_companies_for_selection(self) -> List[dict]:
        return self._call("get_companies_for_selection", "GET", "/companies/selection")

    def get_drivers_for_selection(self, transport_company_id: Optional[str] = None) -> List[dict]:
        params = {"transport_company_id": transport_company_id} if transport_company_id else None
        return self._call("get_drivers_for_selection", "GET", "/drivers/selection", params=params)

    def get_my_driver(self) -> dict:
        return self._call("get_my_driver", "GET", "/drivers/me")

    def get_form_options(self) -> Dict[str, list]:
        return self._call("get_form_options", "GET", "/shipments/form-options")

    def create_shipment(self, **fields) -> dict:
        return self._call("create_shipment", "POST", "/shipments", json=fields)

    def get_shipment(self, shipment_id: str) -> dict:
        return self._call("get_shipment", "GET", f"/shipments/{shipment_id}")

    def update_shipment(self, shipment_id: str, **changes) -> dict:
        return self._call("update_shipment", "PATCH", f"/shipments/{shipment_id}", json=changes)

    def update_shipment_status(self, shipment_id: str, new_status: str, notes: Optional[str] = None) -> dict:
        return self._call("update_shipment_status", "POST", f"/shipments/{shipment_id}/status",
                          json={"new_status": new_status, "notes": notes})

    def approve_shipment(self, shipment_id: str, approval_type: str, is_approved: bool,
                         reason: Optional[str] = None) -> dict:
        return self._call("approve_shipment", "POST", f"/shipments/{shipment_id}/approval",
                          json={"approval_type": approval_type, "is_approved": is_approved, "reason": reason})

    def get_shipment_messages(self, shipment_id: str) -> List[dict]:
        return self._call("get_shipment_messages", "GET", f"/shipments/{shipment_id}/messages")

    def post_shipment_message(self, shipment_id: str, content: str) -> dict:
        return self._call("post_shipment_message", "POST", f"/shipments/{shipment_id}/messages",
                          json={"content": content})

    def add_shipment_report(self, shipment_id: str, report_text: str) -> dict:
        return self._call("add_shipment_report", "POST", f"/shipments/{shipment_id}/report",
                          json={"report_text": report_text})

    def activate_user(self, target_user_id: str, activate: bool) -> dict:
        return self._call("activate_user", "POST", f"/admin/users/{target_user_id}/activation",
                          json={"activate": activate})

    def get_companies_stats(self) -> List[dict]:
        return self._call("get_companies_stats", "GET", "/companies/stats")

    def get_dashboard_stats(self) -> dict:
        return self._call("get_dashboard_stats", "GET", "/admin/stats")

    def get_notifications(self, unread_only: bool = False) -> List[dict]:
        return self._call("get_notifications", "GET", "/notifications", params={"unread_only": unread_only})

    def rpc(self, name: str, **params) -> Any:
        return self._call(name, "POST", f"/rpc/{name}", json=params)
