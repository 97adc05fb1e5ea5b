import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch, AsyncMock, MagicMock
from uuid import uuid4

from sheetpipe.consumers.event_processor import ProcessResult
from sheetpipe.core.errors import SheetNotFound
from sheetpipe.main import create_app
from sheetpipe.models.event import EventStatus
from sheetpipe.testing.testing_mocks import FakeEnricher, StaticIdentityProvider


@pytest.fixture
def app():
    return create_app(
        identity_provider=StaticIdentityProvider(),
        enricher=FakeEnricher(),
        start_processor=False,
        manage_db=False,
    )


@pytest.fixture
def client(app):
    return TestClient(app)


def _queued_event():
    event = MagicMock()
    event.id = uuid4()
    event.status = EventStatus.PENDING
    return event


class TestCellRoutes:
    def test_update_cell_returns_202(self, client):
        """Cell edit is saved and an event is queued"""
        with patch('sheetpipe.api.v1.cells.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.cells.get_columns', new_callable=AsyncMock, return_value=[]), \
             patch('sheetpipe.api.v1.cells.cell_store.upsert', new_callable=AsyncMock) as mock_upsert, \
             patch('sheetpipe.api.v1.cells.event_queue.enqueue', new_callable=AsyncMock) as mock_enqueue:
            event = _queued_event()
            mock_enqueue.return_value = event

            sheet_id = uuid4()
            response = client.post(f"/api/v1/sheets/{sheet_id}/cells", json={"rowIndex": 0, "colIndex": 0, "content": "weather NYC"})

            assert response.status_code == 202
            body = response.json()
            assert body["success"] is True
            assert body["data"]["eventId"] == str(event.id)
            assert body["data"]["status"] == "pending"
            mock_upsert.assert_awaited_once_with(sheet_id, 0, 0, "weather NYC", user_id="user-12345")
            args = mock_enqueue.await_args.args
            assert args[2] == "cell_update"
            assert args[3] == {"rowIndex": 0, "colIndex": 0, "content": "weather NYC"}

    def test_update_cell_in_last_column_publishes_no_pending_cell(self, app, client):
        """No pending cell is announced beyond the last column"""
        with patch('sheetpipe.api.v1.cells.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.cells.get_columns', new_callable=AsyncMock) as mock_columns, \
             patch('sheetpipe.api.v1.cells.cell_store.upsert', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.cells.event_queue.enqueue', new_callable=AsyncMock) as mock_enqueue, \
             patch.object(app.state.broadcaster, 'publish_cell') as mock_publish:
            mock_columns.return_value = [MagicMock(), MagicMock(), MagicMock()]
            mock_enqueue.return_value = _queued_event()

            response = client.post(f"/api/v1/sheets/{uuid4()}/cells", json={"rowIndex": 0, "colIndex": 2, "content": "x"})
            assert response.status_code == 202
            mock_publish.assert_not_called()

            response = client.post(f"/api/v1/sheets/{uuid4()}/cells", json={"rowIndex": 0, "colIndex": 1, "content": "x"})
            assert response.status_code == 202
            assert mock_publish.call_args.args[1:3] == (0, 2)

    def test_update_cell_negative_row(self, client):
        """Validation rejects negative positions"""
        response = client.post(f"/api/v1/sheets/{uuid4()}/cells", json={"rowIndex": -1, "colIndex": 0, "content": "x"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    def test_update_cell_unknown_sheet(self, client):
        """Missing or foreign sheet is a 404"""
        with patch('sheetpipe.api.v1.cells.get_owned_sheet', new_callable=AsyncMock) as mock_owned:
            mock_owned.side_effect = SheetNotFound()

            response = client.post(f"/api/v1/sheets/{uuid4()}/cells", json={"rowIndex": 0, "colIndex": 0, "content": "x"})

            assert response.status_code == 404
            assert response.json()["error"]["code"] == "sheet_not_found"

    def test_update_cell_queue_failure(self, client):
        """Storage failure while queueing is reported as a 500"""
        with patch('sheetpipe.api.v1.cells.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.cells.cell_store.upsert', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.cells.event_queue.enqueue', new_callable=AsyncMock) as mock_enqueue:
            mock_enqueue.side_effect = ConnectionError("db down")

            response = client.post(f"/api/v1/sheets/{uuid4()}/cells", json={"rowIndex": 0, "colIndex": 0, "content": "x"})

            assert response.status_code == 500
            assert response.json()["success"] is False


class TestEventRoutes:
    def test_enqueue_unknown_event_type(self, client):
        """Event types without a handler are rejected"""
        with patch('sheetpipe.api.v1.events.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.events.event_queue.enqueue', new_callable=AsyncMock) as mock_enqueue:
            response = client.post(f"/api/v1/sheets/{uuid4()}/events", json={"eventType": "spell_check", "payload": {}})

            assert response.status_code == 400
            mock_enqueue.assert_not_called()

    def test_enqueue_cell_update_with_negative_row(self, client):
        """Malformed cell positions are rejected before queueing"""
        with patch('sheetpipe.api.v1.events.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.events.event_queue.enqueue', new_callable=AsyncMock) as mock_enqueue:
            response = client.post(f"/api/v1/sheets/{uuid4()}/events", json={"eventType": "cell_update", "payload": {"rowIndex": -5}})

            assert response.status_code == 422
            mock_enqueue.assert_not_called()


class TestSheetRoutes:
    def test_export_unsupported_format(self, client):
        """Only json and csv can be exported"""
        response = client.get(f"/api/v1/sheets/{uuid4()}/data?format=xml")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "unsupported_format"

    def test_add_rows_empty(self, client):
        """Empty rows array is rejected"""
        with patch('sheetpipe.api.v1.sheets.get_owned_sheet', new_callable=AsyncMock):
            response = client.post(f"/api/v1/sheets/{uuid4()}/rows", json={"rows": []})

            assert response.status_code == 400

    def test_add_rows_all_blank(self, client):
        """Rows without any content are rejected"""
        with patch('sheetpipe.api.v1.sheets.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.sheets.cell_store.next_row_index', new_callable=AsyncMock) as mock_next:
            mock_next.return_value = 0

            response = client.post(f"/api/v1/sheets/{uuid4()}/rows", json={"rows": [["", "  "], {"1": None}]})

            assert response.status_code == 400
            assert "empty" in response.json()["error"]["message"]

    def test_add_rows_bad_column_key(self, client):
        with patch('sheetpipe.api.v1.sheets.get_owned_sheet', new_callable=AsyncMock), \
             patch('sheetpipe.api.v1.sheets.cell_store.next_row_index', new_callable=AsyncMock) as mock_next:
            mock_next.return_value = 0

            response = client.post(f"/api/v1/sheets/{uuid4()}/rows", json={"rows": [{"city": "Oslo"}]})

            assert response.status_code == 400
            assert "city" in response.json()["error"]["message"]


class TestProcessRoute:
    def test_process_returns_counts(self, app, client):
        with patch.object(app.state.processor, 'run_once', new_callable=AsyncMock) as mock_run:
            mock_run.return_value = ProcessResult(processed_count=2, completed=2)

            response = client.post("/api/v1/events/process")

            assert response.status_code == 200
            assert response.json()["data"]["processedCount"] == 2
            mock_run.assert_awaited_once_with(sheet_id=None)

    def test_process_storage_failure(self, app, client):
        """A failing batch reports zero processed events"""
        with patch.object(app.state.processor, 'run_once', new_callable=AsyncMock) as mock_run:
            mock_run.side_effect = ConnectionError("database unavailable")

            response = client.post("/api/v1/events/process")

            assert response.status_code == 500
            body = response.json()
            assert body["success"] is False
            assert body["error"]["code"] == "processing_error"
            assert body["data"]["processedCount"] == 0


class TestAuthentication:
    def test_missing_api_key(self):
        """Default identity provider requires a bearer key"""
        client = TestClient(create_app(enricher=FakeEnricher(), start_processor=False, manage_db=False))

        response = client.get(f"/api/v1/sheets/{uuid4()}/status")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_malformed_authorization_header(self):
        client = TestClient(create_app(enricher=FakeEnricher(), start_processor=False, manage_db=False))

        response = client.get(f"/api/v1/sheets/{uuid4()}/status", headers={"Authorization": "Token abc"})

        assert response.status_code == 401
