"""Business services."""

from logistics.services.invoice_processor import InvoiceProcessor, create_invoice_processor
from logistics.services.invoice_steps import DEFAULT_INVOICE_STEPS, SALES_STEP_CODES, InvoiceSteps
from logistics.services.spreadsheet import ExcelReader, load_column_mapping, write_rows

__all__ = [
    "InvoiceProcessor",
    "create_invoice_processor",
    "DEFAULT_INVOICE_STEPS",
    "SALES_STEP_CODES",
    "InvoiceSteps",
    "ExcelReader",
    "load_column_mapping",
    "write_rows",
]
