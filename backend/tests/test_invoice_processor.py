"""Tests for the invoice processor end to end, with fake collaborators."""

from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import orjson
import pytest
import respx
from openpyxl import Workbook

from logistics.clients.dropbox import DropboxClient
from logistics.models import CommonCode
from logistics.services.invoice_processor import InvoiceProcessor
from logistics.services.invoice_steps import DEFAULT_INVOICE_STEPS, InvoiceSteps
from logistics.services.spreadsheet import ExcelReader, load_column_mapping
from logistics.storage.order_repo import OrderRepository
from logistics_core.batch import BatchClassifier
from logistics_core.errors import InvariantViolation
from logistics_core.outcome import RunOutcome
from logistics_core.protocol import UploadResult
from logistics_core.steps import StepRegistry
from logistics_core.tracker import RunState, RunTracker, TrackerEventType

MAPPING_PATH = Path(__file__).resolve().parents[1] / "column_mapping.yaml"

HEADERS = ["수취인명", "전화번호1", "주소", "수량", "주문번호", "쇼핑몰", "송장명", "품목코드"]


def write_orders(path: Path, rows: list[list]) -> Path:
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(HEADERS)
    for row in rows:
        sheet.append(row)
    workbook.save(path)
    return path


def at(hour: int):
    return lambda: datetime(2025, 3, 14, hour, 15)


@pytest.fixture
def store():
    store = MagicMock()
    store.execute = AsyncMock(return_value=1)
    store.query = AsyncMock(return_value=[])
    return store


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.upload = AsyncMock(
        side_effect=lambda path, folder=None: UploadResult(f"https://dl.example/{path.name}", f"/송장/{path.name}")
    )
    return storage


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.send_invoice_notification = AsyncMock(return_value=None)
    return notifier


@pytest.fixture
def tracker():
    return RunTracker()


@pytest.fixture
def make_processor(store, storage, notifier, tracker, tmp_path):
    def factory(
        hour: int = 8,
        default_test_level: int = 22,
        registry: StepRegistry | None = None,
        file_storage=None,
    ) -> InvoiceProcessor:
        steps = InvoiceSteps(
            reader=ExcelReader(load_column_mapping(MAPPING_PATH)),
            orders=OrderRepository(store),
            storage=file_storage or storage,
            notifier=notifier,
            output_dir=tmp_path / "out",
        )
        return InvoiceProcessor(
            steps=steps,
            registry=registry or StepRegistry(None, DEFAULT_INVOICE_STEPS),
            tracker=tracker,
            classifier=BatchClassifier(clock=at(hour)),
            default_test_level=default_test_level,
            time_update_interval=None,
            clock=at(hour),
        )

    return factory


@pytest.fixture
def orders_file(tmp_path):
    return write_orders(
        tmp_path / "orders.xlsx",
        [
            ["홍길동", "010-1234-5678", "서울시 강남구 · 역삼동", 2, "A-1", "쿠팡", "BS_사과", "7710"],
            ["김철수", "010-9999-0000", "제주특별자치도 제주시", 1, "A-2", "배민상회", "배 박스", "1200"],
        ],
    )


class TestRun:
    """Tests for InvoiceProcessor.run."""

    @pytest.mark.asyncio
    async def test_empty_spreadsheet_is_no_data_without_side_effects(
        self, make_processor, store, storage, notifier, tmp_path
    ):
        path = write_orders(tmp_path / "empty.xlsx", [])
        logs = []

        result = await make_processor().run(path, log_sink=logs.append)

        assert result.outcome == RunOutcome.NO_DATA
        assert result.steps_completed == 0
        store.execute.assert_not_called()
        store.query.assert_not_called()
        storage.upload.assert_not_called()
        notifier.send_invoice_notification.assert_not_called()
        assert any("데이터가 없습니다" in line for line in logs)
        assert "⚠️" in result.user_message

    @pytest.mark.asyncio
    async def test_missing_file_fails_before_tracker_starts(self, make_processor, tracker, store, tmp_path):
        events = []
        tracker.on_event(events.append)

        result = await make_processor().run(tmp_path / "nope.xlsx")

        assert result.outcome == RunOutcome.FAILED
        assert "nope.xlsx" in result.error
        assert events == []
        assert tracker.state == RunState.IDLE
        store.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_required_header_fails(self, make_processor, store, tmp_path):
        workbook = Workbook()
        workbook.active.append(["수취인명", "주소"])
        workbook.active.append(["홍길동", "서울"])
        path = tmp_path / "bad.xlsx"
        workbook.save(path)

        result = await make_processor().run(path)

        assert result.outcome == RunOutcome.FAILED
        assert result.failed_step == "엑셀 파일 읽기"
        assert "수량" in result.error
        store.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_test_level_runs_first_n_steps(self, make_processor, orders_file, tracker):
        progress = []
        result = await make_processor().run(orders_file, progress_sink=progress.append, test_level=3)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.steps_completed == 3
        assert [p.code for p in progress] == ["READ_EXCEL", "PREPARE_TABLES", "LOAD_ORIGINAL"]
        assert progress[-1].fraction == 1.0
        assert tracker.target_steps == 3

    @pytest.mark.asyncio
    async def test_invalid_test_level_rejected(self, make_processor, orders_file):
        with pytest.raises(ValueError):
            await make_processor().run(orders_file, test_level=0)

    @pytest.mark.asyncio
    async def test_step_seven_failure_stops_remaining_steps(self, make_processor, orders_file, store, tracker):
        async def execute(sql, params=None):
            if "제주" in sql:
                raise OSError("disk full")
            return 1

        store.execute.side_effect = execute
        events = []
        tracker.on_event(events.append)

        result = await make_processor().run(orders_file, test_level=10)

        assert result.outcome == RunOutcome.FAILED
        assert result.steps_completed == 6
        assert result.failed_step == "제주 주소 표시"
        assert "disk full" in result.root_cause
        executed = [call.args[0] for call in store.execute.call_args_list]
        assert not any("박스" in sql for sql in executed)
        queried = [call.args[0] for call in store.query.call_args_list]
        assert not any("sp_merge_packing" in sql for sql in queried)
        assert len([e for e in events if e.type == TrackerEventType.COMPLETED]) == 1
        assert "❌" in result.user_message

    @pytest.mark.asyncio
    async def test_full_run_exports_uploads_and_notifies(
        self, make_processor, orders_file, store, storage, notifier, tmp_path
    ):
        center_row = {"recipient_name": "홍길동", "address": "서울", "quantity": 2}

        async def query(sql, params=None):
            if "GROUP BY shipment_center" in sql:
                return [{"shipment_center": "서울냉동", "cnt": 1}]
            if "FROM sales_input" in sql:
                return [{"store_name": "쿠팡", "order_number": "A-1", "quantity": 2}]
            if "FROM invoice_orders" in sql:
                return [center_row]
            return []

        store.query.side_effect = query

        result = await make_processor().run(orders_file)

        assert result.outcome == RunOutcome.SUCCESS
        assert result.steps_completed == len(DEFAULT_INVOICE_STEPS)
        exported = sorted(p.name for p in (tmp_path / "out").iterdir())
        assert exported == sorted([
            "서울냉동_배치_20250314_081500.xlsx",
            "통합송장_배치_20250314_081500.xlsx",
            "판매입력_배치_20250314_081500.xlsx",
        ])
        assert storage.upload.await_count == 3
        assert len(result.uploads) == 3
        types = {call.args[0] for call in notifier.send_invoice_notification.call_args_list}
        assert types == {"SeoulFrozen", "Integrated", "SalesData"}
        first = notifier.send_invoice_notification.call_args_list[0].args
        assert first[1] == "2차"

    @pytest.mark.asyncio
    async def test_full_run_uploads_through_dropbox(self, make_processor, orders_file, store, notifier):
        async def query(sql, params=None):
            if "GROUP BY shipment_center" in sql:
                return [{"shipment_center": "서울냉동", "cnt": 1}]
            if "FROM invoice_orders" in sql:
                return [{"recipient_name": "홍길동", "quantity": 2}]
            return []

        store.query.side_effect = query
        dropbox = DropboxClient(
            app_key="key",
            app_secret="secret",
            refresh_token="refresh",
            default_folder="/송장",
            retry_multiplier=0,
        )

        with respx.mock:
            respx.post(DropboxClient.TOKEN_URL).mock(
                return_value=httpx.Response(200, json={"access_token": "tok", "expires_in": 14400})
            )
            upload = respx.post(f"{DropboxClient.CONTENT_URL}/files/upload").mock(
                return_value=httpx.Response(200, json={})
            )
            respx.post(f"{DropboxClient.API_URL}/sharing/create_shared_link_with_settings").mock(
                return_value=httpx.Response(200, json={"url": "https://www.dropbox.com/scl/fi/abc/f.xlsx?dl=0"})
            )

            result = await make_processor(file_storage=dropbox).run(orders_file)
        await dropbox.close()

        assert result.outcome == RunOutcome.SUCCESS
        assert upload.call_count == 2
        assert all(u.remote_url.startswith("https://dl.dropboxusercontent.com/") for u in result.uploads)
        paths = {orjson.loads(call.request.headers["Dropbox-API-Arg"])["path"] for call in upload.calls}
        assert "/송장/서울냉동_배치_20250314_081500.xlsx" in paths
        assert notifier.send_invoice_notification.await_count == 2

    @pytest.mark.asyncio
    async def test_second_run_while_running_rejected(self, make_processor, orders_file, tracker):
        tracker.start(1)
        with pytest.raises(InvariantViolation):
            await make_processor().run(orders_file)

    @pytest.mark.asyncio
    async def test_all_steps_disabled_is_not_success(self, make_processor, orders_file, store, storage):
        source = MagicMock()
        source.get_by_group = AsyncMock(return_value=[
            CommonCode(group_code="PG_PROC", code="READ_EXCEL", code_name="엑셀 파일 읽기", is_used=False),
        ])
        processor = make_processor(registry=StepRegistry(source, DEFAULT_INVOICE_STEPS))

        result = await processor.run(orders_file)

        assert result.outcome == RunOutcome.ABORTED
        assert result.steps_planned == 0
        assert "⚠️" in result.user_message
        store.execute.assert_not_called()
        storage.upload.assert_not_called()


class TestBatchMismatch:
    """Declared batch vs clock."""

    @pytest.mark.asyncio
    async def test_confirmed_mismatch_proceeds(self, make_processor, orders_file):
        asked = []

        def confirm(validation):
            asked.append(validation)
            return True

        result = await make_processor(hour=8).run(orders_file, test_level=1, batch_label="4차", confirm=confirm)

        assert result.outcome == RunOutcome.SUCCESS
        assert asked[0].current_label == "2차"
        assert asked[0].matches is False
        assert any("4차" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_declined_mismatch_aborts_without_side_effects(
        self, make_processor, orders_file, tracker, store
    ):
        events = []
        tracker.on_event(events.append)

        async def decline(validation):
            return False

        result = await make_processor(hour=8).run(orders_file, batch_label="4차", confirm=decline)

        assert result.outcome == RunOutcome.ABORTED
        assert events == []
        store.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_matching_batch_skips_confirmation(self, make_processor, orders_file):
        confirm = MagicMock(return_value=False)
        result = await make_processor(hour=8).run(orders_file, test_level=1, batch_label="2차", confirm=confirm)

        assert result.outcome == RunOutcome.SUCCESS
        confirm.assert_not_called()


class TestSalesInput:
    """Tests for InvoiceProcessor.process_sales_input_data."""

    @pytest.mark.asyncio
    async def test_runs_only_sales_steps(self, make_processor, store, storage, notifier):
        async def query(sql, params=None):
            if "FROM sales_input" in sql:
                return [{"store_name": "쿠팡", "order_number": "A-1", "quantity": 2}]
            return []

        store.query.side_effect = query
        progress = []

        result = await make_processor(default_test_level=1).process_sales_input_data(
            progress_sink=progress.append, batch_label="3차"
        )

        assert result.outcome == RunOutcome.SUCCESS
        assert [p.code for p in progress] == ["SALES_INPUT", "EXPORT_FILES", "UPLOAD_FILES", "SEND_NOTIFICATIONS"]
        queried = [call.args[0] for call in store.query.call_args_list]
        assert any("sp_excel_proc4" in sql for sql in queried)
        assert not any("GROUP BY shipment_center" in sql for sql in queried)
        store.execute.assert_not_called()
        storage.upload.assert_awaited_once()
        notifier.send_invoice_notification.assert_awaited_once()
        assert notifier.send_invoice_notification.call_args.args[:2] == ("SalesData", "3차")

    @pytest.mark.asyncio
    async def test_defaults_to_current_batch(self, make_processor, notifier, store):
        async def query(sql, params=None):
            return [{"store_name": "쿠팡"}] if "FROM sales_input" in sql else []

        store.query.side_effect = query
        await make_processor(hour=16).process_sales_input_data()
        assert notifier.send_invoice_notification.call_args.args[1] == "막차"
