"""HTTP adapter for the scheduling service (customers, services, professionals, appointments).

Every call returns a Result; transport and HTTP errors never raise into the AI turn.
"""

from typing import Any, Optional

import httpx

from concierge.config import settings
from concierge.logging_config import get_logger
from concierge.services.result import Result

logger = get_logger("scheduling_client")


class SchedulingClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.scheduling_api_url).rstrip("/")
        self.token = token if token is not None else settings.scheduling_api_token
        self.timeout_seconds = timeout_seconds or settings.scheduling_timeout_seconds
        self.http_client = http_client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Result[Any]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        url = f"{self.base_url}{path}"

        try:
            if self.http_client is None:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, params=params, json=json, headers=headers)
            else:
                response = await self.http_client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TimeoutException:
            return Result.failure(f"{method} {path} timed out", code="timeout")
        except httpx.HTTPError as exc:
            return Result.failure(f"{method} {path} failed: {exc}", code="network_error")

        if response.status_code == 404:
            return Result.failure(_error_detail(response) or "not found", code="not_found")
        if response.status_code in (400, 409, 422):
            return Result.failure(_error_detail(response) or "invalid request", code="invalid_request")
        if response.status_code >= 300:
            logger.warning(
                "Scheduling API error",
                extra={"context": {"path": path, "status": response.status_code}},
            )
            return Result.failure(f"scheduling service returned {response.status_code}", code="upstream_error")

        if not response.content:
            return Result.success({})
        return Result.success(response.json())

    async def identify_customer(self, salon_id, phone: str, name: Optional[str] = None) -> Result[Any]:
        return await self._request("POST", f"/salons/{salon_id}/customers/identify", json={"phone": phone, "name": name})

    async def get_services(self, salon_id, include_inactive: bool = False) -> Result[Any]:
        return await self._request(
            "GET", f"/salons/{salon_id}/services", params={"include_inactive": str(include_inactive).lower()}
        )

    async def get_professionals(self, salon_id, include_inactive: bool = False) -> Result[Any]:
        return await self._request(
            "GET", f"/salons/{salon_id}/professionals", params={"include_inactive": str(include_inactive).lower()}
        )

    async def check_availability(
        self,
        salon_id,
        date: str,
        professional_id: Optional[str] = None,
        service_id: Optional[str] = None,
        service_duration: Optional[int] = None,
    ) -> Result[Any]:
        return await self._request(
            "GET",
            f"/salons/{salon_id}/availability",
            params={
                "date": date,
                "professional_id": professional_id,
                "service_id": service_id,
                "service_duration": service_duration,
            },
        )

    async def create_appointment(
        self,
        salon_id,
        phone: str,
        professional_id: str,
        service_id: str,
        date: str,
        notes: Optional[str] = None,
    ) -> Result[Any]:
        return await self._request(
            "POST",
            f"/salons/{salon_id}/appointments",
            json={
                "phone": phone,
                "professional_id": professional_id,
                "service_id": service_id,
                "date": date,
                "notes": notes,
            },
        )

    async def get_future_appointments(self, salon_id, phone: str) -> Result[Any]:
        return await self._request(
            "GET", f"/salons/{salon_id}/appointments", params={"phone": phone, "upcoming": "true"}
        )

    async def reschedule_appointment(self, salon_id, appointment_id: str, new_date: str) -> Result[Any]:
        return await self._request(
            "PATCH", f"/salons/{salon_id}/appointments/{appointment_id}", json={"date": new_date}
        )

    async def cancel_appointment(self, salon_id, appointment_id: str, reason: Optional[str] = None) -> Result[Any]:
        return await self._request(
            "POST", f"/salons/{salon_id}/appointments/{appointment_id}/cancel", json={"reason": reason}
        )

    async def save_customer_preference(self, salon_id, customer_id, key: str, value: Any) -> Result[Any]:
        return await self._request(
            "PUT",
            f"/salons/{salon_id}/customers/{customer_id}/preferences",
            json={"key": key, "value": value},
        )

    async def qualify_lead(self, salon_id, phone: str, interest: str, notes: Optional[str] = None) -> Result[Any]:
        return await self._request(
            "POST",
            f"/salons/{salon_id}/leads",
            json={"phone": phone, "interest": interest, "notes": notes},
        )

    async def get_professional_availability_rules(self, salon_id, professional_name: str) -> Result[Any]:
        return await self._request(
            "GET",
            f"/salons/{salon_id}/professionals/availability-rules",
            params={"professional_name": professional_name},
        )


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(data, dict):
        detail = data.get("error") or data.get("detail") or data.get("message")
        return str(detail) if detail else None
    return None
