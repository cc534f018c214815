import unittest

import requests
import responses

from blob_uploader.controller import UploadOrchestrator
from blob_uploader.models import InvalidTransitionError, SourceFile, UploadStatus
from blob_uploader.services import (
    ListingService,
    S3ListingService,
    S3PresignTokenAuthority,
    TokenAuthority,
)
from blob_uploader.settings import UploaderSettings
from blob_uploader.ui_utils import build_tiles

API = "http://api.test"
PROXY = "http://proxy.test"


class UploadFlowTests(unittest.TestCase):
    """Full token -> transfer -> listing flows against mocked HTTP endpoints."""

    def setUp(self):
        self.settings = UploaderSettings(api_server=API, proxy_server=PROXY, container_name="c")
        self.orchestrator = UploadOrchestrator.from_settings(self.settings)

    def _urls(self):
        return [(call.request.method, call.request.url.split("?")[0]) for call in responses.calls]

    @responses.activate
    def test_direct_upload_refreshes_listing_with_image_tile(self):
        responses.add(responses.POST, f"{API}/api/sas", json={"url": "https://store/c/photo.jpg?sig=abc"})
        responses.add(responses.PUT, "https://store/c/photo.jpg", status=201)
        responses.add(responses.GET, f"{API}/api/list", json={"list": ["https://store/c/photo.jpg"]})

        self.orchestrator.select_file(SourceFile(name="photo.jpg", data=b"x" * 10000))
        self.orchestrator.request_token()
        attempt = self.orchestrator.upload_direct()

        self.assertIs(UploadStatus.LISTING_REFRESHED, attempt.status)
        self.assertEqual("Successfully finished upload", attempt.status_text)
        tiles = build_tiles(self.orchestrator.listing.entries)
        self.assertEqual(1, len(tiles))
        self.assertEqual("image", tiles[0].kind)
        self.assertEqual("https://store/c/photo.jpg", tiles[0].address)
        self.assertEqual(
            [("POST", f"{API}/api/sas"), ("PUT", "https://store/c/photo.jpg"), ("GET", f"{API}/api/list")],
            self._urls(),
        )

    @responses.activate
    def test_oversized_direct_upload_never_reaches_the_store(self):
        responses.add(responses.POST, f"{API}/api/sas", json={"url": "https://store/c/doc.pdf?sig=abc"})
        responses.add(responses.PUT, "https://store/c/doc.pdf", status=201)

        self.orchestrator.select_file(SourceFile(name="doc.pdf", data=b"x" * 300000))
        self.orchestrator.request_token()
        attempt = self.orchestrator.upload_direct()

        self.assertIs(UploadStatus.TRANSFER_FAILED, attempt.status)
        self.assertIn("limited to 256000 bytes", attempt.status_text)
        self.assertEqual([("POST", f"{API}/api/sas")], self._urls())

    @responses.activate
    def test_token_network_error_stops_the_flow(self):
        responses.add(responses.POST, f"{API}/api/sas", body=requests.ConnectionError("Network Error"))

        self.orchestrator.select_file(SourceFile(name="photo.jpg", data=b"x"))
        attempt = self.orchestrator.request_token()

        self.assertIs(UploadStatus.TOKEN_FAILED, attempt.status)
        self.assertTrue(attempt.status_text.startswith("Error getting access token:"))
        self.assertIn("Network Error", attempt.status_text)
        with self.assertRaises(InvalidTransitionError):
            self.orchestrator.upload_direct()
        self.assertEqual(1, len(responses.calls))
        self.assertIsNone(self.orchestrator.listing)

    @responses.activate
    def test_proxy_failure_reports_server_text_and_skips_listing(self):
        responses.add(responses.POST, f"{API}/api/sas", json={"url": "https://store/c/photo.jpg?sig=abc"})
        responses.add(responses.POST, f"{PROXY}/api/files", status=500, body="storage unavailable")

        self.orchestrator.select_file(SourceFile(name="photo.jpg", data=b"x"))
        self.orchestrator.request_token()
        attempt = self.orchestrator.upload_via_server()

        self.assertIs(UploadStatus.TRANSFER_FAILED, attempt.status)
        self.assertIn("storage unavailable", attempt.status_text)
        self.assertEqual([("POST", f"{API}/api/sas"), ("POST", f"{PROXY}/api/files")], self._urls())

    @responses.activate
    def test_direct_transport_failure_keeps_signature_out_of_logs_and_status(self):
        responses.add(responses.POST, f"{API}/api/sas", json={"url": "https://store/c/photo.jpg?sv=2024&sig=TOPSECRET"})
        error = requests.ConnectionError("Max retries exceeded with url: /c/photo.jpg?sv=2024&sig=TOPSECRET")
        responses.add(responses.PUT, "https://store/c/photo.jpg", body=error)

        self.orchestrator.select_file(SourceFile(name="photo.jpg", data=b"x"))
        with self.assertLogs("blob_uploader", level="DEBUG") as logs:
            self.orchestrator.request_token()
            attempt = self.orchestrator.upload_direct()

        self.assertIs(UploadStatus.TRANSFER_FAILED, attempt.status)
        self.assertIn("Max retries exceeded", attempt.status_text)
        for line in logs.output:
            self.assertNotIn("TOPSECRET", line)
        self.assertNotIn("TOPSECRET", attempt.status_text)
        self.assertNotIn("TOPSECRET", attempt.status_detail)

    @responses.activate
    def test_listing_error_after_proxy_upload_keeps_success(self):
        responses.add(responses.POST, f"{API}/api/sas", json={"url": "https://store/c/notes.txt?sig=abc"})
        responses.add(responses.POST, f"{PROXY}/api/files", status=200)
        responses.add(responses.GET, f"{API}/api/list", status=503, body="try later")

        self.orchestrator.select_file(SourceFile(name="notes.txt", data=b"hello"))
        self.orchestrator.request_token()
        with self.assertLogs("blob_uploader.controller", level="WARNING"):
            attempt = self.orchestrator.upload_via_server()

        self.assertIs(UploadStatus.TRANSFER_SUCCEEDED, attempt.status)
        self.assertEqual("Successfully finished upload", attempt.status_text)
        self.assertIn("503", attempt.listing_error)
        self.assertIsNone(self.orchestrator.listing)


class FromSettingsTests(unittest.TestCase):
    def test_server_authority_uses_http_services(self):
        orchestrator = UploadOrchestrator.from_settings(UploaderSettings())

        self.assertIsInstance(orchestrator._authority, TokenAuthority)
        self.assertIsInstance(orchestrator._listing_service, ListingService)

    def test_s3_authority_uses_presigning_services(self):
        settings = UploaderSettings(
            token_authority="s3",
            s3_endpoint_url="https://s3.test",
            s3_access_key="access",
        )

        orchestrator = UploadOrchestrator.from_settings(settings, s3_secret_key="secret")

        self.assertIsInstance(orchestrator._authority, S3PresignTokenAuthority)
        self.assertIsInstance(orchestrator._listing_service, S3ListingService)


if __name__ == "__main__":
    unittest.main()
