"""Concrete invoice pipeline steps.

Each step is an async callable taking the RunContext. The default ordering
below is what the PG_PROC common codes are seeded with and what the
registry falls back to when the store has no rows.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable

from logistics.models import NotificationType
from logistics.services.spreadsheet import write_rows
from logistics.storage.order_repo import EXPORT_COLUMNS, SALES_EXPORT_COLUMNS, OrderRepository
from logistics_core.executor import RunContext
from logistics_core.outcome import StepStatus
from logistics_core.protocol import FileStorage, Notifier, SpreadsheetReader
from logistics_core.steps import StepDefinition, StepHandler

logger = logging.getLogger(__name__)


DEFAULT_INVOICE_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition("READ_EXCEL", "엑셀 파일 읽기", 10, "주문 엑셀 파일을 읽고 컬럼을 매핑"),
    StepDefinition("PREPARE_TABLES", "작업 테이블 초기화", 20, "sp_table_cre"),
    StepDefinition("LOAD_ORIGINAL", "원본 데이터 적재", 30, "작업 테이블 비우고 원본 주문 적재"),
    StepDefinition("SEED_REFERENCE", "참조 데이터 준비", 40, "톡딜불가 참조 테이블 생성 및 예시 데이터"),
    StepDefinition("CLEAN_DATA", "1차 데이터 정제", 50, "별표, 송장명, 수취인명, 주소, 결제수단 정리"),
    StepDefinition("INVOICE_MESSAGE", "송장출력 메세지 생성", 60, "sp_invoice_message"),
    StepDefinition("JEJU_MARKING", "제주 주소 표시", 70, "제주특별자치도 주소 별표2 표시"),
    StepDefinition("BOX_MARKING", "박스 상품 표시", 80, "박스 상품 송장명 접두어"),
    StepDefinition("MERGE_PACKING", "합포장 처리", 90, "sp_merge_packing"),
    StepDefinition("TALKDEAL_UNAVAILABLE", "톡딜불가 처리", 100, "sp_talkdeal_unavailable"),
    StepDefinition("SHIPMENT_CLASSIFY", "출고지 분류", 110, "sp_shipment_classify"),
    StepDefinition("SEOUL_FROZEN", "서울냉동 처리", 120, "sp_seoul_frozen_process"),
    StepDefinition("GYEONGGI_FROZEN", "경기냉동 처리", 130, "sp_gyeonggi_process_f"),
    StepDefinition("SEOUL_GONGSAN", "서울공산 처리", 140, "sp_seoul_gongsan_process_f"),
    StepDefinition("GYEONGGI_GONGSAN", "경기공산 처리", 150, "sp_gyeonggi_gongsan_process_f"),
    StepDefinition("BUSAN_CHEONGGWA", "부산청과 처리", 160, "sp_busan_ext_shipment_process"),
    StepDefinition("GAMCHEON_FROZEN", "감천냉동 처리", 170, "sp_gamcheon_frozen_process"),
    StepDefinition("INVOICE_FINAL", "송장 최종 통합", 180, "sp_invoice_final_process"),
    StepDefinition("SALES_INPUT", "판매입력 자료 생성", 190, "sp_excel_proc4"),
    StepDefinition("EXPORT_FILES", "송장 파일 생성", 200, "출고지별 엑셀 파일 생성"),
    StepDefinition("UPLOAD_FILES", "파일 업로드", 210, "Dropbox 업로드"),
    StepDefinition("SEND_NOTIFICATIONS", "카카오워크 알림", 220, "출고지별 카카오워크 알림"),
)

SALES_STEP_CODES = ("SALES_INPUT", "EXPORT_FILES", "UPLOAD_FILES", "SEND_NOTIFICATIONS")

PROCEDURES: dict[str, str] = {
    "PREPARE_TABLES": "sp_table_cre",
    "INVOICE_MESSAGE": "sp_invoice_message",
    "MERGE_PACKING": "sp_merge_packing",
    "TALKDEAL_UNAVAILABLE": "sp_talkdeal_unavailable",
    "SHIPMENT_CLASSIFY": "sp_shipment_classify",
    "SEOUL_FROZEN": "sp_seoul_frozen_process",
    "GYEONGGI_FROZEN": "sp_gyeonggi_process_f",
    "SEOUL_GONGSAN": "sp_seoul_gongsan_process_f",
    "GYEONGGI_GONGSAN": "sp_gyeonggi_gongsan_process_f",
    "BUSAN_CHEONGGWA": "sp_busan_ext_shipment_process",
    "GAMCHEON_FROZEN": "sp_gamcheon_frozen_process",
    "INVOICE_FINAL": "sp_invoice_final_process",
    "SALES_INPUT": "sp_excel_proc4",
}

TALKDEAL_EXAMPLES = [
    {"store_name": "카카오톡스토어", "product_code": "TD0001", "product_name": "예시 상품 (톡딜불가)"},
    {"store_name": "카카오톡스토어", "product_code": "TD0002", "product_name": "예시 박스 상품 (톡딜불가)"},
]

RULE_LABELS = {
    "star_address": "품목코드 7710/7720 주소 별표",
    "invoice_name_prefix": "송장명 BS_ → GC_",
    "recipient_nan": "수취인명 nan → 난난",
    "address_middle_dot": "주소 중점(·) 제거",
    "baemin_payment": "배민상회 결제수단 0",
}


class InvoiceSteps:
    """Holds the collaborators and exposes one method per step code."""

    def __init__(
        self,
        reader: SpreadsheetReader,
        orders: OrderRepository,
        storage: FileStorage,
        notifier: Notifier,
        output_dir: Path,
        remote_folder: str | None = None,
    ):
        self.reader = reader
        self.orders = orders
        self.storage = storage
        self.notifier = notifier
        self.output_dir = Path(output_dir)
        self.remote_folder = remote_folder

    def handlers(self) -> dict[str, StepHandler]:
        handlers = {
            code: StepHandler(self._procedure_step(code, name))
            for code, name in PROCEDURES.items()
        }
        handlers.update({
            "READ_EXCEL": StepHandler(self.read_excel),
            "LOAD_ORIGINAL": StepHandler(self.load_original),
            "SEED_REFERENCE": StepHandler(self.seed_reference, critical=False),
            "CLEAN_DATA": StepHandler(self.clean_data),
            "JEJU_MARKING": StepHandler(self.jeju_marking),
            "BOX_MARKING": StepHandler(self.box_marking),
            "EXPORT_FILES": StepHandler(self.export_files),
            "UPLOAD_FILES": StepHandler(self.upload_files),
            "SEND_NOTIFICATIONS": StepHandler(self.send_notifications),
        })
        return handlers

    # -- input -----------------------------------------------------------

    async def read_excel(self, ctx: RunContext) -> StepStatus:
        if ctx.spreadsheet_path is None:
            raise ValueError("spreadsheet_path is required for READ_EXCEL")
        rows = await asyncio.to_thread(self.reader.read_rows, ctx.spreadsheet_path)
        ctx.rows = rows
        if not rows:
            ctx.log(f"[처리 중단] {ctx.spreadsheet_path.name}: 엑셀 파일에 데이터가 없습니다.", logging.WARNING)
            return StepStatus.NO_DATA
        ctx.log(f"📊 {len(rows)}건의 주문을 읽었습니다.")
        return StepStatus.CONTINUE

    async def load_original(self, ctx: RunContext) -> StepStatus:
        await self.orders.truncate()
        inserted = await self.orders.insert_batch(ctx.rows)
        ctx.log(f"💾 원본 데이터 {inserted}건 적재 완료")
        return StepStatus.CONTINUE

    async def seed_reference(self, ctx: RunContext) -> StepStatus:
        await self.orders.ensure_talkdeal_table()
        inserted = await self.orders.seed_talkdeal_examples(TALKDEAL_EXAMPLES)
        if inserted:
            ctx.log(f"톡딜불가 예시 데이터 {inserted}건 추가")
        return StepStatus.CONTINUE

    # -- transformation --------------------------------------------------

    async def clean_data(self, ctx: RunContext) -> StepStatus:
        changed = await self.orders.apply_first_stage_rules()
        for rule, count in changed.items():
            ctx.log(f"  - {RULE_LABELS.get(rule, rule)}: {count}건")
        return StepStatus.CONTINUE

    async def jeju_marking(self, ctx: RunContext) -> StepStatus:
        count = await self.orders.mark_jeju()
        ctx.log(f"  - 제주 주소 {count}건 표시")
        return StepStatus.CONTINUE

    async def box_marking(self, ctx: RunContext) -> StepStatus:
        count = await self.orders.mark_box_products()
        ctx.log(f"  - 박스 상품 {count}건 표시")
        return StepStatus.CONTINUE

    def _procedure_step(self, code: str, procedure: str) -> Callable[[RunContext], Awaitable[StepStatus]]:
        async def run_procedure(ctx: RunContext) -> StepStatus:
            entries = await self.orders.call_procedure(procedure)
            for entry in entries:
                ctx.log(f"  - {entry}")
            if not entries:
                logger.debug(f"{procedure} returned no execution log rows")
            return StepStatus.CONTINUE

        run_procedure.__name__ = f"run_{code.lower()}"
        return run_procedure

    # -- output ----------------------------------------------------------

    async def export_files(self, ctx: RunContext) -> StepStatus:
        """Write one file per shipment center, an integrated file and the sales input file."""
        if not ctx.sales_only:
            # Several centers can share a notification type (every unmapped one goes to Check)
            grouped: dict[NotificationType, list[dict]] = {}
            counts = await self.orders.count_by_center()
            for center, count in sorted(counts.items()):
                if count == 0:
                    continue
                ntype = NotificationType.from_center(center)
                grouped.setdefault(ntype, []).extend(await self.orders.fetch_center_rows(center))
            for ntype, rows in grouped.items():
                await self._export(ctx, ntype, rows, EXPORT_COLUMNS)

            all_rows = await self.orders.fetch_all_rows()
            if all_rows:
                await self._export(ctx, NotificationType.INTEGRATED, all_rows, EXPORT_COLUMNS)

        sales_rows = await self.orders.fetch_sales_input()
        if sales_rows:
            await self._export(ctx, NotificationType.SALES_DATA, sales_rows, SALES_EXPORT_COLUMNS)

        if not ctx.exports:
            ctx.log("생성할 파일이 없습니다.", logging.WARNING)
        return StepStatus.CONTINUE

    async def _export(
        self,
        ctx: RunContext,
        ntype: NotificationType,
        rows: list[dict],
        columns: list[tuple[str, str]],
    ) -> None:
        path = self.output_dir / f"{ntype.display_name}_{ctx.batch_id}.xlsx"
        await asyncio.to_thread(write_rows, path, columns, rows, ntype.display_name)
        ctx.exports[ntype.value] = path
        ctx.export_counts[ntype.value] = len(rows)
        ctx.log(f"📄 {path.name} ({len(rows)}건)")

    async def upload_files(self, ctx: RunContext) -> StepStatus:
        for key, path in ctx.exports.items():
            result = await self.storage.upload(path, self.remote_folder)
            ctx.uploads[key] = result
            ctx.log(f"☁️ {path.name} 업로드 완료")
        return StepStatus.CONTINUE

    async def send_notifications(self, ctx: RunContext) -> StepStatus:
        """Notify each uploaded file's chat room. Per-room failures are warnings."""
        sent = 0
        for key, upload in ctx.uploads.items():
            try:
                await self.notifier.send_invoice_notification(
                    key,
                    ctx.batch_label,
                    ctx.batch_id,
                    ctx.export_counts.get(key, 0),
                    upload.remote_url,
                )
                sent += 1
            except Exception as e:
                warning = f"{key} 알림 전송 실패: {e}"
                ctx.warnings.append(warning)
                ctx.log(f"⚠️ {warning}", logging.WARNING)
        ctx.log(f"📨 알림 {sent}/{len(ctx.uploads)}건 전송")
        return StepStatus.CONTINUE
