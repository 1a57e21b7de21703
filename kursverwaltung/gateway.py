from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from .models import EntityConfig, Record
from .parser import parse_record, parse_records


logger = logging.getLogger(__name__)


class GatewayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def build_headers(api_key: Optional[str], cookie: Optional[str]) -> dict[str, str]:
    headers = {
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    # Never log credential values. Only indicate presence.
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
        logger.info("LivingApps API key: set")
    else:
        logger.info("LivingApps API key: not set")
    if cookie:
        headers["Cookie"] = cookie
        logger.info("LivingApps cookie: set")
    return headers


def _clean_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None}


class RecordGateway:
    """Thin async client for the LivingApps record API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        timeout: float = 15.0,
        read_attempts: int = 3,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=min(timeout, 10.0))
        self.read_attempts = read_attempts

    def _records_url(self, ent: EntityConfig, record_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/apps/{ent.app_id}/records"
        if record_id:
            url += f"/{record_id}"
        return url

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self.client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.HTTPError as e:
            raise GatewayError(f"{method} {url} failed: {e}") from e
        if not (200 <= resp.status_code < 300):
            raise GatewayError(
                f"{method} {url} returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        return resp

    async def list(self, ent: EntityConfig) -> List[Record]:
        url = self._records_url(ent)
        last_error: Optional[GatewayError] = None
        for attempt in range(self.read_attempts):
            try:
                resp = await self._request("GET", url)
                records = parse_records(resp.json())
                logger.debug("Loaded %d %s records", len(records), ent.key)
                return records
            except GatewayError as e:
                # Client errors will not go away on retry
                if e.status_code is not None and 400 <= e.status_code < 500:
                    raise
                last_error = e
                logger.warning("List %s attempt %s failed: %s", ent.key, attempt + 1, e)
            except ValueError as e:
                raise GatewayError(f"Invalid record list for {ent.key}: {e}") from e
        assert last_error is not None
        raise last_error

    async def create(self, ent: EntityConfig, fields: Dict[str, Any]) -> Record:
        resp = await self._request(
            "POST", self._records_url(ent), json={"fields": _clean_fields(fields)}
        )
        rec = self._record_from(resp, ent, fields)
        logger.info("Created %s record %s", ent.key, rec.record_id)
        return rec

    async def update(self, ent: EntityConfig, record_id: str, fields: Dict[str, Any]) -> Record:
        resp = await self._request(
            "PATCH", self._records_url(ent, record_id), json={"fields": _clean_fields(fields)}
        )
        rec = self._record_from(resp, ent, fields, record_id)
        logger.info("Updated %s record %s (%s)", ent.key, record_id, ", ".join(sorted(fields)))
        return rec

    async def delete(self, ent: EntityConfig, record_id: str) -> None:
        await self._request("DELETE", self._records_url(ent, record_id))
        logger.info("Deleted %s record %s", ent.key, record_id)

    def _record_from(
        self,
        resp: httpx.Response,
        ent: EntityConfig,
        fields: Dict[str, Any],
        record_id: Optional[str] = None,
    ) -> Record:
        try:
            data = resp.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            if record_id and "id" not in data:
                data = {**data, "id": record_id}
            try:
                return parse_record(data)
            except ValueError:
                pass
        if not record_id:
            # The record exists on the gateway; only its id is unknown here
            logger.warning("Create %s: response carries no record id", ent.key)
        return Record(record_id=record_id or "", fields=_clean_fields(fields))
