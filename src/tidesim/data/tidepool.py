from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from tidesim.config import DEFAULT_BASE_URL, Credentials
from tidesim.data.store import PatientStore, require_ids
from tidesim.errors import MissingConfiguration
from tidesim.population.generator import GeneratedPatient

logger = logging.getLogger("tidesim.data")

SESSION_TOKEN_HEADER = "x-tidepool-session-token"
PAGE_SIZE = 100
UPLOAD_BATCH = 1000
CLIENT_NAME = "org.tidepool.tidesim"
BIRTH_DATE = "2000-01-01"


@dataclass
class TidepoolClient:
    """
    Thin JSON client for the Tidepool platform API.

    Only the handful of endpoints patient setup needs are covered. Requests
    are made once; failures surface as ``urllib.error.HTTPError``.
    """
    base_url: str = DEFAULT_BASE_URL
    token: Optional[str] = None
    timeout: float = 30.0

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers[SESSION_TOKEN_HEADER] = self.token
        return headers

    def _url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = self.base_url.rstrip("/") + "/" + path.lstrip("/")
        if params:
            url += "?" + urllib.parse.urlencode(params)
        return url

    def _request(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self.token:
            raise MissingConfiguration("TidepoolClient requires a session token. Call login() first.")
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(self._url(path, params), data=data, headers=self._headers(), method=method)
        with urllib.request.urlopen(req, timeout=self.timeout) as response:  # nosec - configured base URL
            payload = response.read().decode("utf-8")
        return json.loads(payload) if payload else None

    def login(self, credentials: Credentials) -> str:
        """Exchange username/password for a session token."""
        raw = f"{credentials.username}:{credentials.password}".encode("utf-8")
        headers = {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
        req = urllib.request.Request(self._url("/auth/login"), data=b"", headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=self.timeout) as response:  # nosec - configured base URL
            token = response.headers.get(SESSION_TOKEN_HEADER)
        if not token:
            raise MissingConfiguration("Tidepool login returned no session token")
        self.token = token
        return token

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._request("GET", path, params=params)

    def post_json(self, path: str, body: Any) -> Any:
        return self._request("POST", path, body=body)

    def delete(self, path: str) -> None:
        self._request("DELETE", path)


def cbg_records(samples: pd.DataFrame, device_id: str) -> List[Dict[str, Any]]:
    """CGM readings as Tidepool ``cbg`` data records."""
    records: List[Dict[str, Any]] = []
    for ts, glucose in zip(samples["timestamp"], samples["glucose"]):
        stamp = pd.Timestamp(ts).strftime("%Y-%m-%dT%H:%M:%S.000Z")
        records.append(
            {
                "type": "cbg",
                "units": "mg/dL",
                "value": float(glucose),
                "time": stamp,
                "deviceTime": stamp[:-5],
                "timezoneOffset": 0,
                "deviceId": device_id,
            }
        )
    return records


class TidepoolPatientStore(PatientStore):
    """Stores generated patients as custodial clinic patients with CGM uploads."""

    def __init__(self, client: TidepoolClient, credentials: Optional[Credentials] = None) -> None:
        self.client = client
        self.credentials = credentials

    def _ensure_session(self, credentials: Optional[Credentials] = None) -> None:
        if self.client.token:
            return
        creds = credentials or self.credentials
        if creds is None:
            raise MissingConfiguration("Tidepool credentials are required")
        self.client.login(creds)

    def create_patients(self, patients: Iterable[GeneratedPatient]) -> List[str]:
        self._ensure_session()
        ids: List[str] = []
        for patient in patients:
            require_ids(patient.clinic_id, patient.tag_id)
            created = self.client.post_json(
                f"/v1/clinics/{patient.clinic_id}/patients",
                {"fullName": patient.name, "birthDate": BIRTH_DATE, "tags": [patient.tag_id]},
            )
            patient_id = created["id"]
            self._upload(patient_id, patient)
            logger.debug("Created %s as %s", patient.name, patient_id)
            ids.append(patient_id)
        logger.info("Created %d patients in Tidepool", len(ids))
        return ids

    def _upload(self, patient_id: str, patient: GeneratedPatient) -> None:
        if patient.samples.empty:
            return
        device_id = f"tidesim-{patient_id}"
        data_set = self.client.post_json(
            f"/v1/users/{patient_id}/data_sets",
            {
                "type": "upload",
                "dataSetType": "continuous",
                "client": {"name": CLIENT_NAME, "version": "1.0.0"},
                "deviceId": device_id,
                "deviceManufacturers": ["tidesim"],
                "deviceModel": "synthetic-cgm",
                "deviceTags": ["cgm"],
                "timeProcessing": "none",
            },
        )
        data_set_id = data_set["data"]["id"] if "data" in data_set else data_set["id"]
        records = cbg_records(patient.samples, device_id)
        for start in range(0, len(records), UPLOAD_BATCH):
            self.client.post_json(f"/v1/data_sets/{data_set_id}/data", records[start:start + UPLOAD_BATCH])

    def _tagged_patient_ids(self, clinic_id: str, tag_id: str) -> List[str]:
        ids: List[str] = []
        offset = 0
        while True:
            page = self.client.get_json(
                f"/v1/clinics/{clinic_id}/patients",
                params={"tags": tag_id, "offset": offset, "limit": PAGE_SIZE},
            )
            rows = page.get("data", []) if isinstance(page, dict) else page or []
            ids.extend(row["id"] for row in rows)
            if len(rows) < PAGE_SIZE:
                return ids
            offset += PAGE_SIZE

    def delete_patients(self, credentials: Optional[Credentials], clinic_id: str, tag_id: str) -> int:
        require_ids(clinic_id, tag_id)
        self._ensure_session(credentials)
        deleted = 0
        for patient_id in self._tagged_patient_ids(clinic_id, tag_id):
            try:
                self.client.delete(f"/v1/clinics/{clinic_id}/patients/{patient_id}")
            except urllib.error.HTTPError as exc:
                # Already removed by an earlier, interrupted cleanup.
                if exc.code != 404:
                    raise
                continue
            deleted += 1
        logger.info("Deleted %d patients from clinic %s tag %s", deleted, clinic_id, tag_id)
        return deleted
