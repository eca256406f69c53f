from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, Generator, List, Optional

import requests

from . import messages
from .errors import ApiClientError, ApiProtocolError
from .retry import RetryExecutor
from .transport import HttpTransport, reason_phrase

logger = logging.getLogger(__name__)

API_URL = "/api/v2"
PAGE_SIZE = 500
ENGAGEMENT_WINDOW_DAYS = 30
UPLOAD_FILENAME = "file.json"
UPLOAD_CONTENT_TYPE = "application/octet-stream"
SUCCESS_STATUSES = (200, 201, 202)

FAILURE_DIAGNOSTICS = {
    400: messages.PAYLOAD_INVALID,
    401: messages.UNAUTHORIZED,
    404: messages.PRODUCT_NOT_FOUND,
}


@dataclass(frozen=True)
class Endpoint:
    path: str
    # query parameter for id lookups; None for list-only endpoints
    lookup_param: Optional[str] = None


PRODUCTS = Endpoint(API_URL + "/products", "name_exact")
ENGAGEMENTS = Endpoint(API_URL + "/engagements/", "name")
SCAN_TYPES = Endpoint(API_URL + "/test_types")
TESTS = Endpoint(API_URL + "/tests", "scan_type")
UPLOAD_URL = API_URL + "/import-scan/"
REUPLOAD_URL = API_URL + "/reimport-scan/"

ENGAGEMENT_DEFAULTS: Dict[str, Any] = {
    "description": "Auto-created via CI pipeline",
    "engagement_type": "Interactive",
    "status": "In Progress",
    "deduplication_on_engagement": True,
}

UPLOAD_DEFAULTS: Dict[str, Any] = {
    "do_not_reactivate": True,
    "active": False,
    "verified": False,
    "minimum_severity": "Low",
}


@dataclass
class ScanUpload:
    product_id: Optional[str]
    engagement_id: Optional[str]
    scan_type: str
    artifact_path: str
    source_code_uri: Optional[str] = None
    branch_tag: Optional[str] = None
    commit_hash: Optional[str] = None
    reupload: bool = False


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _results(r: requests.Response) -> List[Dict[str, Any]]:
    try:
        data = r.json()
    except ValueError as e:
        raise ApiProtocolError(messages.MALFORMED_RESPONSE.format(detail=e), r.status_code) from e
    if not isinstance(data, dict) or not isinstance(data.get("results"), list):
        raise ApiProtocolError(messages.MALFORMED_RESPONSE.format(detail="missing 'results'"), r.status_code)
    return data["results"]


class DefectDojoClient:
    """All REST interactions with DefectDojo.

    Every public call goes through ``self.retry`` exactly once. Lookups return
    ``None`` when nothing matches; mutating calls report failure through their
    return value and log a diagnostic instead of raising.
    """

    def __init__(self, base_url: str, api_key: str,
                 connect_timeout: float = 0, read_timeout: float = 0,
                 verify_ssl: bool = True,
                 transport: Optional[HttpTransport] = None,
                 retry: Optional[RetryExecutor] = None) -> None:
        self.base = base_url.rstrip("/")
        self.transport = transport or HttpTransport(self.base, api_key, connect_timeout, read_timeout, verify_ssl)
        self.retry = retry or RetryExecutor()
        # diagnostic of the last failed create/upload
        self.last_error: Optional[str] = None

    def __enter__(self) -> "DefectDojoClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    # ---------- Connection ----------
    def test_connection(self) -> bool:
        def _attempt() -> bool:
            r = self.transport.execute("GET", PRODUCTS.path)
            if r.ok:
                return True
            logger.error(r.text)
            raise ApiClientError(
                messages.CONNECTION_ERROR.format(status=r.status_code, reason=reason_phrase(r)), r.status_code)

        return self.retry.execute(_attempt)

    # ---------- Pagination ----------
    def _get_page(self, endpoint: Endpoint, offset: int, limit: int, **filters: Any) -> List[Dict[str, Any]]:
        params = dict(filters, limit=limit, offset=offset)

        def _attempt() -> List[Dict[str, Any]]:
            r = self.transport.execute("GET", endpoint.path, params=params)
            if not r.ok:
                # end of data; a failing page must not abort a partial listing
                logger.warning("Listing %s stopped at offset %d: HTTP %s %s",
                               endpoint.path, offset, r.status_code, r.text)
                return []
            return _results(r)

        return self.retry.execute(_attempt)

    def iter_all(self, endpoint: Endpoint, **filters: Any) -> Generator[Dict[str, Any], None, None]:
        offset = 0
        while True:
            page = self._get_page(endpoint, offset, PAGE_SIZE, **filters)
            if not page:
                return
            yield from page
            offset += PAGE_SIZE

    def list_all(self, endpoint: Endpoint, **filters: Any) -> List[Dict[str, Any]]:
        return list(self.iter_all(endpoint, **filters))

    def get_products(self) -> List[Dict[str, Any]]:
        return self.list_all(PRODUCTS)

    def get_engagements(self, product_id: str) -> List[Dict[str, Any]]:
        return self.list_all(ENGAGEMENTS, product=product_id)

    def get_scan_types(self) -> List[Dict[str, Any]]:
        return self.list_all(SCAN_TYPES)

    # ---------- Lookups ----------
    def _get_id(self, endpoint: Endpoint, params: Dict[str, Any]) -> Optional[str]:
        def _attempt() -> Optional[str]:
            r = self.transport.execute("GET", endpoint.path, params=params)
            if not r.ok:
                logger.error(r.text)
                return None
            results = _results(r)
            if results:
                first = results[0]
                if not isinstance(first, dict) or "id" not in first:
                    raise ApiProtocolError(messages.MALFORMED_RESPONSE.format(detail="record without 'id'"), r.status_code)
                return str(first["id"])
            return None

        return self.retry.execute(_attempt)

    def get_product_id(self, product_name: str) -> Optional[str]:
        return self._get_id(PRODUCTS, {PRODUCTS.lookup_param: product_name})

    def get_engagement_id(self, product_id: Optional[str], engagement_name: str) -> Optional[str]:
        params: Dict[str, Any] = {ENGAGEMENTS.lookup_param: engagement_name}
        if product_id is not None:
            params["product"] = product_id
        return self._get_id(ENGAGEMENTS, params)

    def get_scan_id(self, engagement_id: str, scan_type: str) -> Optional[str]:
        return self._get_id(TESTS, {"engagement": engagement_id, TESTS.lookup_param: scan_type})

    # ---------- Engagements ----------
    def create_engagement(self, engagement_name: str, product_id: str,
                          source_code_uri: Optional[str] = None) -> Optional[str]:
        self.last_error = None
        today = date.today()
        payload = dict(ENGAGEMENT_DEFAULTS)
        payload.update({
            "name": engagement_name,
            "product": product_id,
            "target_start": today.isoformat(),
            "target_end": (today + timedelta(days=ENGAGEMENT_WINDOW_DAYS)).isoformat(),
        })
        if not _blank(source_code_uri):
            payload["source_code_management_uri"] = source_code_uri
        logger.debug(f"Attempt to create engagement {payload}")

        def _attempt() -> Optional[str]:
            r = self.transport.execute("POST", ENGAGEMENTS.path, json=payload)
            if r.status_code == 201:
                try:
                    return str(r.json()["id"])
                except (ValueError, KeyError, TypeError) as e:
                    raise ApiProtocolError(messages.MALFORMED_RESPONSE.format(detail=e), r.status_code) from e
            self._log_failure(r)
            return None

        return self.retry.execute(_attempt)

    # ---------- Import / reimport ----------
    @staticmethod
    def build_scan_metadata(upload: ScanUpload) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "scan_type": upload.scan_type,
            "engagement": upload.engagement_id,
            "product_id": upload.product_id,
        }
        if not _blank(upload.source_code_uri):
            data["source_code_management_uri"] = upload.source_code_uri
        if not _blank(upload.branch_tag):
            data["branch_tag"] = upload.branch_tag
        if not _blank(upload.commit_hash):
            data["commit_hash"] = upload.commit_hash
        data.update(UPLOAD_DEFAULTS)
        return data

    def upload(self, upload: ScanUpload) -> bool:
        if not os.path.isfile(upload.artifact_path):
            self.last_error = messages.ARTIFACT_PROCESSING.format(artifact=upload.artifact_path, detail="file not found")
            logger.error(self.last_error)
            return False
        try:
            with open(upload.artifact_path, "rb") as fh:
                content = fh.read()
        except OSError as e:
            self.last_error = messages.ARTIFACT_PROCESSING.format(artifact=upload.artifact_path, detail=e)
            logger.error(self.last_error)
            return False

        self.last_error = None
        data = self.build_scan_metadata(upload)
        url = UPLOAD_URL
        scan_id = None
        if not _blank(upload.engagement_id):
            scan_id = self.get_scan_id(str(upload.engagement_id), upload.scan_type)

        if upload.reupload and not _blank(scan_id):
            url = REUPLOAD_URL
            data["test"] = scan_id
            data.pop("active", None)
            data.pop("verified", None)

        form = {k: _form_value(v) for k, v in data.items() if v is not None}
        logger.info("Uploading %s to %s (scan_type=%s)", upload.artifact_path, url, upload.scan_type)

        def _attempt() -> bool:
            files = {"file": (UPLOAD_FILENAME, content, UPLOAD_CONTENT_TYPE)}
            r = self.transport.execute("POST", url, data=form, files=files)
            if r.status_code in SUCCESS_STATUSES:
                return True
            self._log_failure(r)
            return False

        return self.retry.execute(_attempt)

    def _log_failure(self, r: requests.Response) -> None:
        diagnostic = FAILURE_DIAGNOSTICS.get(r.status_code) or messages.CONNECTION_ERROR.format(
            status=r.status_code, reason=reason_phrase(r))
        self.last_error = diagnostic
        logger.error(diagnostic)
        logger.error(r.text)
