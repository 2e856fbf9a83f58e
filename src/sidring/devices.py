"""Managed device enrollment export.

Pulls Intune managed devices from Microsoft Graph and writes one CSV row
per device.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("sidring.devices")

GRAPH_URL = "https://graph.microsoft.com/v1.0"
LOGIN_URL = "https://login.microsoftonline.com"
MANAGED_DEVICES_PATH = "/deviceManagement/managedDevices"


class GraphError(RuntimeError):
    """Token acquisition or a Graph request failed."""


class ManagedDevice(BaseModel):
    """The exported subset of a Graph managedDevice."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    device_name: str = Field("", alias="deviceName")
    user_principal_name: str | None = Field(None, alias="userPrincipalName")
    serial_number: str | None = Field(None, alias="serialNumber")
    operating_system: str | None = Field(None, alias="operatingSystem")
    os_version: str | None = Field(None, alias="osVersion")
    compliance_state: str | None = Field(None, alias="complianceState")
    owner_type: str | None = Field(None, alias="managedDeviceOwnerType")
    azure_ad_device_id: str | None = Field(None, alias="azureADDeviceId")
    enrolled_date_time: datetime | None = Field(None, alias="enrolledDateTime")
    last_sync_date_time: datetime | None = Field(None, alias="lastSyncDateTime")


EXPORT_COLUMNS = list(ManagedDevice.model_fields)


class GraphClient:
    """Client-credentials Graph client for the managedDevices collection."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        client_secret: str,
        *,
        http: httpx.Client | None = None,
    ):
        if not (tenant_id and client_id and client_secret):
            raise GraphError("tenant_id, client_id and client_secret are required")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self._client_secret = client_secret
        self._http = http or httpx.Client(timeout=60)
        self._token: str | None = None

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> GraphClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_token(self) -> str:
        if self._token is None:
            try:
                response = self._http.post(
                    f"{LOGIN_URL}/{self.tenant_id}/oauth2/v2.0/token",
                    data={
                        "client_id": self.client_id,
                        "client_secret": self._client_secret,
                        "scope": "https://graph.microsoft.com/.default",
                        "grant_type": "client_credentials",
                    },
                )
                body = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise GraphError(f"Token request failed: {exc}") from exc
            if not isinstance(body, dict):
                body = {}
            if response.status_code != 200 or "access_token" not in body:
                raise GraphError(
                    body.get("error_description") or f"Token request failed ({response.status_code})"
                )
            self._token = body["access_token"]
        return self._token

    def iter_pages(self, url: str) -> Iterator[dict]:
        """Yield items from a Graph collection, following @odata.nextLink."""
        headers = {"Authorization": f"Bearer {self.get_token()}"}
        next_url: str | None = url
        while next_url:
            try:
                response = self._http.get(next_url, headers=headers)
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise GraphError(f"GET {next_url} failed: {exc}") from exc
            if not isinstance(body, dict):
                raise GraphError(f"GET {next_url} returned {type(body).__name__}, expected an object")
            yield from body.get("value", [])
            next_url = body.get("@odata.nextLink")

    def iter_managed_devices(self) -> Iterator[ManagedDevice]:
        for item in self.iter_pages(GRAPH_URL + MANAGED_DEVICES_PATH):
            try:
                device = ManagedDevice.model_validate(item)
            except ValidationError as exc:
                raise GraphError(f"Unexpected managedDevice record: {exc}") from exc
            yield device


def export_devices(
    devices: Iterable[ManagedDevice],
    path: Path,
    enrolled_since: datetime | None = None,
) -> int:
    """Write devices to a CSV file at path. Returns the number of rows written.

    With enrolled_since, devices enrolled earlier (or with no enrollment
    date) are left out. The header row is always written. Rows go to a
    temporary file beside path, which replaces path only once every device
    has been read, so a failed export leaves the previous file in place.
    """
    path = Path(path)
    written = 0
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=EXPORT_COLUMNS)
            writer.writeheader()
            for device in devices:
                if enrolled_since is not None and (
                    device.enrolled_date_time is None or device.enrolled_date_time < enrolled_since
                ):
                    continue
                row = device.model_dump(mode="json")
                writer.writerow({k: "" if v is None else v for k, v in row.items()})
                written += 1
        os.replace(tmp_name, path)
    except BaseException:
        os.unlink(tmp_name)
        raise
    logger.info("Wrote %d device(s) to %s", written, path)
    return written
