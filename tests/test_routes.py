"""API tests for the listing pipeline routes."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from maisoku_app import main
from maisoku_app.main import app
from maisoku_app.routes import listing_pipeline as routes
from maisoku_app.services.listing_pipeline.progress import Stage
from maisoku_app.services.notion_publisher import (
    DestinationSchemaError,
    NotionAPIError,
    PageCreationResult,
)
from maisoku_app.utils.rate_limiter import RateLimiter

from conftest import PARK_MANSION_TEXT, RESIDENCE_SHINJUKU_TEXT, FakeExtractionService, service_response


@pytest.fixture
def pipeline(make_pipeline):
    return make_pipeline(extraction_service=FakeExtractionService(
        response=service_response(property_name="パークマンション青山", rent=120000)
    ))


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def client(pipeline, publisher, progress_channel):
    app.dependency_overrides[routes.get_pipeline] = lambda: pipeline
    app.dependency_overrides[routes.get_notion_publisher] = lambda: publisher
    app.dependency_overrides[routes.get_progress_channel] = lambda: progress_channel
    yield TestClient(app)
    app.dependency_overrides.clear()


def text_files(*docs):
    return [("files", (name, text.encode('utf-8'), "text/plain")) for name, text in docs]


class TestBatchEndpoints:

    def test_upload_groups_without_extracting(self, client, pipeline):
        response = client.post(
            "/api/v1/listings/upload?session_id=s1",
            files=text_files(("a.txt", PARK_MANSION_TEXT), ("b.txt", PARK_MANSION_TEXT))
        )
        assert response.status_code == 200
        data = response.json()
        assert data['success']
        assert data['session_id'] == "s1"
        assert len(data['files']) == 2
        assert len(data['groups']) == 1
        assert data['listings'] == []
        assert pipeline.orchestrator.service.calls == []

    def test_process_extracts_each_group(self, client):
        response = client.post(
            "/api/v1/listings/process",
            files=text_files(("a.txt", PARK_MANSION_TEXT), ("b.txt", RESIDENCE_SHINJUKU_TEXT))
        )
        data = response.json()
        assert data['success']
        assert len(data['listings']) == 2
        listing = data['listings'][0]['listing']
        assert listing['rent']['value'] == 120000
        assert data['statistics']['group_count'] == 2

    def test_no_files_is_bad_request(self, client):
        response = client.post("/api/v1/listings/process")
        assert response.status_code == 400

    def test_blank_session_id_is_bad_request(self, client):
        response = client.post(
            "/api/v1/listings/process?session_id=%20",
            files=text_files(("a.txt", PARK_MANSION_TEXT))
        )
        assert response.status_code == 400


class TestExtractEndpoint:

    def test_extract(self, client):
        response = client.post("/api/v1/listings/extract", json={
            'session_id': "s1",
            'candidate_text': PARK_MANSION_TEXT,
            'page_index': 2
        })
        data = response.json()
        assert data['success']
        assert data['method'] == "llm"
        assert data['page_index'] == 2
        assert data['listing']['property_name']['value'] == "パークマンション青山"
        assert 'address' in data['listing']

    def test_missing_text_is_bad_request(self, client):
        response = client.post("/api/v1/listings/extract", json={'session_id': "s1"})
        assert response.status_code == 400

    def test_negative_page_index_rejected(self, client):
        response = client.post("/api/v1/listings/extract", json={
            'session_id': "s1", 'candidate_text': "x", 'page_index': -1
        })
        assert response.status_code == 422


class TestImageEndpoint:

    def test_missing_parameters(self, client):
        response = client.post("/api/v1/listings/images/classify", json={'session_id': "s1"})
        assert response.status_code == 400

    def test_unreachable_document_reports_failure(self, client, monkeypatch):
        monkeypatch.setattr(routes.PDFHandler, 'download_pdf', staticmethod(lambda url: None))
        response = client.post("/api/v1/listings/images/classify", json={
            'session_id': "s1", 'file_url': "memory://s1/missing.pdf", 'file_name': "missing.pdf"
        })
        data = response.json()
        assert response.status_code == 200
        assert not data['success']
        assert "missing.pdf" in data['error']


LISTING_PAYLOAD = {
    'property_name': {'value': "パークマンション青山", 'confidence': 0.9,
                      'evidence': {'page_index': 0, 'snippet': "物件名: パークマンション青山"}},
    '賃料': {'value': 120000, 'confidence': 0.9, 'evidence': {'page_index': 0, 'snippet': ""}},
}


class TestNotionEndpoint:

    def test_publish(self, client, publisher):
        publisher.publish_listings.return_value = [PageCreationResult(success=True, page_id="p1")]
        response = client.post("/api/v1/listings/notion", json={'listings': [LISTING_PAYLOAD]})

        data = response.json()
        assert data['success']
        assert data['created'] == 1
        listings, database_id = publisher.publish_listings.call_args[0]
        assert set(listings[0]) == {'property_name', 'rent'}
        assert database_id is None

    def test_schema_mismatch_is_unprocessable(self, client, publisher):
        publisher.publish_listings.side_effect = DestinationSchemaError(['賃料', '間取り'])
        response = client.post("/api/v1/listings/notion", json={'listings': [LISTING_PAYLOAD]})
        assert response.status_code == 422
        assert response.json()['missing_fields'] == ['賃料', '間取り']

    def test_unauthorized_passes_through(self, client, publisher):
        publisher.publish_listings.side_effect = NotionAPIError("unauthorized", status_code=401)
        response = client.post("/api/v1/listings/notion", json={'listings': [LISTING_PAYLOAD]})
        assert response.status_code == 401

    def test_no_listings(self, client):
        assert client.post("/api/v1/listings/notion", json={'listings': []}).status_code == 400

    def test_string_evidence_is_accepted(self, client, publisher):
        publisher.publish_listings.return_value = [PageCreationResult(success=True, page_id="p1")]
        payload = {'賃料': {'value': 120000, 'confidence': 0.9, 'evidence': "賃料: 120,000円"}}
        response = client.post("/api/v1/listings/notion", json={'listings': [payload]})

        assert response.status_code == 200
        listings, _ = publisher.publish_listings.call_args[0]
        assert listings[0]['rent'].evidence.snippet == "賃料: 120,000円"


class TestSessionEndpoints:

    def test_cancel_without_running_batch(self, client, pipeline, progress_channel):
        response = client.delete("/api/v1/listings/sessions/s1")
        assert response.json() == {'success': True, 'session_id': "s1", 'cancelled': False}
        assert not pipeline.is_cancelled("s1")
        assert not progress_channel.has_session("s1")

    def test_session_reusable_after_late_cancel(self, client):
        files = text_files(("a.txt", PARK_MANSION_TEXT))
        client.post("/api/v1/listings/process?session_id=s1", files=files)
        client.delete("/api/v1/listings/sessions/s1")

        data = client.post("/api/v1/listings/process?session_id=s1", files=files).json()
        assert data['success']
        assert len(data['listings']) == 1

    def test_stream_replays_events_until_terminal(self, client, progress_channel):
        progress_channel.publish("s1", Stage.DETECT, 1, 2, "a.pdf: 1 candidate(s)")
        progress_channel.publish("s1", Stage.COMPLETE, 1, 1, "1 listing(s) detected", "success")

        response = client.get("/api/v1/listings/sessions/s1/stream")

        assert response.status_code == 200
        assert response.headers['content-type'].startswith("text/event-stream")
        assert "event: detect" in response.text
        assert response.text.rstrip().split("\n\n")[-1].startswith("event: complete")

    def test_stream_of_closed_session_ends(self, client, progress_channel):
        progress_channel.close("s2")
        response = client.get("/api/v1/listings/sessions/s2/stream")
        assert response.text == ""

    def test_stream_of_unknown_session_ends_after_grace(self, client, monkeypatch):
        monkeypatch.setattr(routes, 'SSE_UNKNOWN_SESSION_GRACE_SECONDS', 0)
        response = client.get("/api/v1/listings/sessions/never-opened/stream")
        assert response.status_code == 200
        assert response.text == ""


def test_rate_limit_reports_each_service(client, monkeypatch):
    limiter = RateLimiter(max_total_calls=10, min_delay_seconds=0, enabled=True)
    limiter.record_call('extraction')
    limiter.record_call('extraction')
    limiter.record_call('vision')
    monkeypatch.setattr(main, 'rate_limiter', limiter)

    data = client.get("/api/rate-limit").json()
    assert data['total_calls'] == 3
    assert data['remaining_calls'] == 7
    assert data['services']['extraction']['calls_last_minute'] == 2
    assert data['services']['vision']['total_calls'] == 1


def test_schema(client):
    data = client.get("/api/v1/listings/schema").json()
    assert len(data['required_keys']) == 15
    assert '賃料' in data['destination_required']
    rent = next(f for f in data['fields'] if f['key'] == "rent")
    assert rent['notion_name'] == "賃料"
    assert rent['required']


def test_health(client):
    data = client.get("/api/health").json()
    assert data['status'] == "healthy"
