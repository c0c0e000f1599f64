"""HTTP client for the docucenter API.

Attaches the admin PIN (or, failing that, a guest PIN) to every request, sends
JSON and turns non-success responses into :class:`ApiRequestError`.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from .config import settings

logger = logging.getLogger(__name__)


class ApiRequestError(Exception):
    """A request to the API failed with a non-success HTTP status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class LibraryApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        admin_pin: Optional[str] = None,
        guest_pin: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.admin_pin = admin_pin
        self.guest_pin = guest_pin
        self._client = httpx.Client(
            base_url=(base_url or settings.api_base_url).rstrip("/"),
            timeout=timeout or settings.api_timeout,
            transport=transport,
        )

    # PINs are held in memory for the session only.
    def set_admin_pin(self, pin: str) -> None:
        self.admin_pin = pin

    def set_guest_pin(self, pin: str) -> None:
        self.guest_pin = pin

    def clear_pins(self) -> None:
        self.admin_pin = None
        self.guest_pin = None

    def _auth_headers(self) -> Dict[str, str]:
        if self.admin_pin:
            return {"X-Admin-PIN": self.admin_pin}
        if self.guest_pin:
            return {"X-Guest-PIN": self.guest_pin}
        return {}

    def request(self, method: str, endpoint: str, json: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"Content-Type": "application/json", **self._auth_headers()}
        response = self._client.request(method, endpoint, json=json, params=params, headers=headers)
        if not response.is_success:
            raise ApiRequestError(response.status_code, self._error_message(response))
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail")
            if isinstance(message, str) and message:
                return message
        logger.debug("No error message in %s response body", response.status_code)
        return f"HTTP {response.status_code}"

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LibraryApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------- Auth ------------------------- #
    def verify_admin(self, pin: str) -> Dict[str, Any]:
        return self.request("POST", "/auth/verify-admin", json={"pin": pin})

    def verify_guest(self, pin: str) -> Dict[str, Any]:
        return self.request("POST", "/auth/verify-guest", json={"pin": pin})

    # ------------------------- Books ------------------------- #
    def list_books(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/books")

    def get_book(self, book_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/books/{book_id}")

    def create_book(self, **fields: Any) -> Dict[str, Any]:
        return self.request("POST", "/books", json=fields)

    def update_book(self, book_id: str, **fields: Any) -> Dict[str, Any]:
        return self.request("PUT", f"/books/{book_id}", json=fields)

    def delete_book(self, book_id: str) -> None:
        self.request("DELETE", f"/books/{book_id}")

    # ------------------------- Loans ------------------------- #
    def list_loans(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        return self.request("GET", "/loans", params=params)

    def create_loan(
        self,
        book_id: str,
        borrower_id: Optional[str],
        due_date: date,
        borrower_type: str = "participant",
        borrower_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload = {
            "book_id": book_id,
            "borrower_id": borrower_id,
            "borrower_type": borrower_type,
            "borrower_name": borrower_name,
            "due_date": due_date.isoformat(),
        }
        return self.request("POST", "/loans", json=payload)

    def return_loan(self, loan_id: str) -> Dict[str, Any]:
        return self.request("POST", f"/loans/{loan_id}/return")

    def renew_loan(self, loan_id: str, due_date: date) -> Dict[str, Any]:
        return self.request("POST", f"/loans/{loan_id}/renew", json={"due_date": due_date.isoformat()})

    # ------------------------- Material loans ------------------------- #
    def return_material_loan(self, loan_id: str) -> Dict[str, Any]:
        return self.request("POST", f"/materials/loans/{loan_id}/return")

    def renew_material_loan(self, loan_id: str, due_date: date) -> Dict[str, Any]:
        return self.request("POST", f"/materials/loans/{loan_id}/renew", json={"due_date": due_date.isoformat()})

    # ------------------------- Dashboard ------------------------- #
    def get_stats(self) -> Dict[str, Any]:
        return self.request("GET", "/dashboard/stats")

    def recent_activity(self, limit: int = 5) -> List[Dict[str, Any]]:
        return self.request("GET", "/dashboard/recent-activity", params={"limit": limit})

    def get_report(
        self, name: str, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> Dict[str, Any]:
        params = {}
        if start_date:
            params["start_date"] = start_date.isoformat()
        if end_date:
            params["end_date"] = end_date.isoformat()
        return self.request("GET", f"/reports/{name}", params=params or None)

    # ------------------------- Audit log ------------------------- #
    def list_audit_log(self, page: int = 1, page_size: int = 100, **filters: Any) -> Dict[str, Any]:
        params = {"page": page, "page_size": page_size}
        params.update({key: value for key, value in filters.items() if value is not None})
        return self.request("GET", "/audit-log", params=params)

    def audit_log_stats(self, days: int = 30) -> Dict[str, Any]:
        return self.request("GET", "/audit-log/stats", params={"days": days})
