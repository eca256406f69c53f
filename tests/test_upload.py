from __future__ import annotations

import logging

import pytest
import responses
from responses import matchers

from dojo_publisher import messages
from dojo_publisher.client import DefectDojoClient, ScanUpload


def _tests_lookup(base, results):
    responses.add(responses.GET, f"{base}/api/v2/tests",
                  match=[matchers.query_param_matcher({"engagement": "21", "scan_type": "ZAP Scan"})],
                  json={"results": results}, status=200)


def _upload(report, reupload=False, **kw):
    return ScanUpload(product_id="10", engagement_id="21", scan_type="ZAP Scan",
                      artifact_path=str(report), reupload=reupload, **kw)


def _form_field(body: bytes, name: str) -> bytes:
    marker = f'name="{name}"\r\n\r\n'.encode()
    start = body.index(marker) + len(marker)
    return body[start:body.index(b"\r\n", start)]


@responses.activate
def test_reupload_with_existing_scan_targets_reimport(client, dojo_base_url, report):
    _tests_lookup(dojo_base_url, [{"id": 77}])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/reimport-scan/", json={"test": 77}, status=201)

    assert client.upload(_upload(report, reupload=True)) is True

    body = responses.calls[1].request.body
    assert _form_field(body, "test") == b"77"
    assert b'name="active"' not in body
    assert b'name="verified"' not in body
    assert _form_field(body, "do_not_reactivate") == b"true"


@responses.activate
def test_no_reupload_targets_import_even_when_scan_exists(client, dojo_base_url, report):
    _tests_lookup(dojo_base_url, [{"id": 77}])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={"test": 78}, status=201)

    assert client.upload(_upload(report, reupload=False)) is True

    body = responses.calls[1].request.body
    assert b'name="test"' not in body
    assert _form_field(body, "active") == b"false"
    assert _form_field(body, "verified") == b"false"


@responses.activate
def test_reupload_without_existing_scan_targets_import(client, dojo_base_url, report):
    _tests_lookup(dojo_base_url, [])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={}, status=200)

    assert client.upload(_upload(report, reupload=True)) is True
    assert responses.calls[1].request.url == f"{dojo_base_url}/api/v2/import-scan/"


@responses.activate
def test_multipart_body_fields_and_file_part(client, dojo_base_url, dojo_token, report):
    _tests_lookup(dojo_base_url, [])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={}, status=201)

    ok = client.upload(_upload(report, source_code_uri="https://git.example/repo",
                               branch_tag="main", commit_hash=" "))
    assert ok is True

    request = responses.calls[1].request
    assert request.headers["Authorization"] == f"Token {dojo_token}"
    assert request.headers["Content-Type"].startswith("multipart/form-data")
    body = request.body
    assert _form_field(body, "scan_type") == b"ZAP Scan"
    assert _form_field(body, "engagement") == b"21"
    assert _form_field(body, "product_id") == b"10"
    assert _form_field(body, "source_code_management_uri") == b"https://git.example/repo"
    assert _form_field(body, "branch_tag") == b"main"
    assert _form_field(body, "minimum_severity") == b"Low"
    assert b'name="commit_hash"' not in body
    assert b'name="file"; filename="file.json"' in body
    assert b"Content-Type: application/octet-stream" in body
    assert b'{"site": []}' in body


@responses.activate
def test_no_engagement_skips_scan_lookup(client, dojo_base_url, report):
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={}, status=202)

    upload = ScanUpload(product_id="10", engagement_id=None, scan_type="ZAP Scan",
                        artifact_path=str(report), reupload=True)
    assert client.upload(upload) is True
    assert len(responses.calls) == 1


@pytest.mark.parametrize("status", [200, 201, 202])
@responses.activate
def test_success_statuses(client, dojo_base_url, report, status):
    _tests_lookup(dojo_base_url, [])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={}, status=status)

    assert client.upload(_upload(report)) is True
    assert client.last_error is None


@pytest.mark.parametrize("status,diagnostic", [
    (400, messages.PAYLOAD_INVALID),
    (401, messages.UNAUTHORIZED),
    (404, messages.PRODUCT_NOT_FOUND),
    (503, messages.CONNECTION_ERROR.format(status=503, reason="Service Unavailable")),
])
@responses.activate
def test_failure_statuses_log_diagnostic_then_body(client, dojo_base_url, report, caplog, status, diagnostic):
    caplog.set_level(logging.ERROR, logger="dojo_publisher.client")
    _tests_lookup(dojo_base_url, [])
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/",
                  body='{"detail": "nope"}', status=status)

    assert client.upload(_upload(report)) is False

    errors = [r.getMessage() for r in caplog.records if r.levelno == logging.ERROR]
    assert errors[-2:] == [diagnostic, '{"detail": "nope"}']
    assert client.last_error == diagnostic
    assert len(responses.calls) == 2


@responses.activate
def test_missing_artifact_short_circuits(client, tmp_path):
    upload = ScanUpload(product_id="10", engagement_id="21", scan_type="ZAP Scan",
                        artifact_path=str(tmp_path / "missing.json"))

    assert client.upload(upload) is False
    assert len(responses.calls) == 0


@responses.activate
def test_upload_retries_transient_failure_with_same_content(dojo_base_url, report, retry):
    import requests

    client = DefectDojoClient(dojo_base_url, "k", retry=retry)
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", body=requests.ConnectionError("reset"))
    responses.add(responses.POST, f"{dojo_base_url}/api/v2/import-scan/", json={}, status=201)

    upload = ScanUpload(product_id="10", engagement_id="", scan_type="ZAP Scan", artifact_path=str(report))
    assert client.upload(upload) is True
    assert len(responses.calls) == 2
    assert b'{"site": []}' in responses.calls[1].request.body


@responses.activate
def test_unreadable_artifact_reports_processing_error(client, report, monkeypatch):
    import dojo_publisher.client as client_module

    def _denied(path, *args, **kwargs):
        raise PermissionError(13, "Permission denied", path)

    monkeypatch.setattr(client_module, "open", _denied, raising=False)

    assert client.upload(_upload(report)) is False
    denied = PermissionError(13, "Permission denied", str(report))
    assert client.last_error == messages.ARTIFACT_PROCESSING.format(artifact=str(report), detail=denied)
    assert len(responses.calls) == 0
