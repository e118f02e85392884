"""HTTP schedule client — implements SchedulePort against the HTTP API.

Used by the Telegram bot when API_BASE_URL is set. Transport failures and
5xx responses become ScheduleUnavailable; a rejected override batch comes
back as InvalidOverride with the server's field-level issues.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

import httpx

from src.config import settings
from src.core.override_validation import InvalidOverride, OverrideIssue
from src.core.serialization import schedule_from_dict
from src.data.models import ResolvedWeekSchedule
from src.ports.schedule_port import ScheduleUnavailable

logger = logging.getLogger(__name__)


class HttpScheduleClient:
    """Remote implementation of SchedulePort plus the override write path."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        member_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.API_TIMEOUT_SECONDS
        self._member_id = member_id
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        if self._member_id:
            headers = {"X-Member-Id": self._member_id, **(headers or {})}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url, timeout=self._timeout, transport=self._transport,
            ) as client:
                resp = await client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Schedule API %s %s failed: %s", method, path, exc)
            raise ScheduleUnavailable(f"Schedule API unreachable: {exc}") from exc

        if resp.status_code == 400:
            try:
                detail = resp.json().get("detail")
            except ValueError:
                detail = resp.text
            if isinstance(detail, dict) and "issues" in detail:
                raise InvalidOverride([
                    OverrideIssue(i.get("index"), i.get("field", ""), i.get("reason", ""))
                    for i in detail["issues"]
                ])
            raise ValueError(str(detail))
        if resp.status_code >= 500:
            logger.error("Schedule API %s %s returned %d", method, path, resp.status_code)
            raise ScheduleUnavailable(f"Schedule API returned {resp.status_code}")
        try:
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ValueError(f"Schedule API rejected request: {resp.status_code}") from exc
        return resp.json()

    async def get_week_schedule(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        data = await self._request(
            "GET",
            f"/families/{family_id}/schedule",
            params={"weekStartDate": week_start.isoformat()},
        )
        return schedule_from_dict(data)

    async def apply_override(self, family_id: str, request: dict[str, Any]) -> ResolvedWeekSchedule:
        """POST an override batch (camelCase body, dates as YYYY-MM-DD)."""
        data = await self._request("POST", f"/families/{family_id}/overrides", json=request)
        return schedule_from_dict(data)

    async def revert_week(self, family_id: str, week_start: date) -> ResolvedWeekSchedule:
        data = await self._request(
            "DELETE", f"/families/{family_id}/overrides/{week_start.isoformat()}",
        )
        return schedule_from_dict(data)

    async def task_split(
        self, family_id: str, week_start: date, window_weeks: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"weekStartDate": week_start.isoformat()}
        if window_weeks is not None:
            params["windowWeeks"] = window_weeks
        return await self._request("GET", f"/families/{family_id}/task-split", params=params)

    async def shift_status(
        self, family_id: str, member_id: str | None = None, week_start: date | None = None,
    ) -> dict[str, Any] | None:
        """Shift status of member_id, or of the member this client acts for.

        Raises:
            ValueError: no member given and the client has none configured.
        """
        member_id = member_id or self._member_id
        if not member_id:
            raise ValueError("shift_status needs a member_id")
        params = {"weekStartDate": week_start.isoformat()} if week_start else None
        data = await self._request(
            "GET",
            f"/families/{family_id}/shift-status",
            params=params,
            headers={"X-Member-Id": member_id},
        )
        return data.get("status")
