"""Excel (.xlsx) export and import of transactions."""
import io
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Tuple

import openpyxl
from openpyxl.utils import get_column_letter
from pydantic import ValidationError

from models.transaction import FALLBACK_CATEGORY, Transaction, TransactionCreate

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
SHEET_TITLE = "收支明细"

HEADER_MAP = {
    'date': '日期',
    'category': '分类',
    'type': '类型',
    'amount': '金额',
    'description': '备注',
}
REVERSE_HEADER_MAP = {label: field for field, label in HEADER_MAP.items()}
EXPORT_COLUMNS = ['date', 'type', 'category', 'amount', 'description']

TYPE_LABELS = {'INCOME': '收入', 'EXPENSE': '支出'}
INCOME_MARKERS = {'收入', 'INCOME'}

DATE_FORMATS = ["%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d"]


def export_filename(today: date) -> str:
    return f"AI记账本_导出_{today.isoformat()}.xlsx"


def export_transactions(transactions: Iterable[Transaction]) -> bytes:
    """Writes the transactions to a single-sheet workbook and returns its bytes."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE
    ws.append([HEADER_MAP[field] for field in EXPORT_COLUMNS])
    count = 0
    for t in transactions:
        ws.append([
            t.date.isoformat(),
            TYPE_LABELS.get(t.type, t.type),
            t.category,
            t.amount,
            t.description,
        ])
        count += 1
    for index, width in enumerate([12, 8, 10, 12, 30], start=1):
        ws.column_dimensions[get_column_letter(index)].width = width

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info(f"Exported {count} transactions to Excel ({buffer.tell()} bytes).")
    return buffer.getvalue()


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date '{text}'")


def _normalize_row(headers: List[str], values: Tuple[Any, ...]) -> Dict[str, Any]:
    row: Dict[str, Any] = {}
    for header, value in zip(headers, values):
        if header:
            row[header] = value
    return row


def _row_to_transaction(row: Dict[str, Any]) -> TransactionCreate:
    type_label = str(row.get('type') or '').strip()
    return TransactionCreate(
        date=_parse_date(row['date']),
        amount=abs(float(row['amount'])),
        type='INCOME' if type_label in INCOME_MARKERS else 'EXPENSE',
        category=str(row.get('category') or FALLBACK_CATEGORY).strip() or FALLBACK_CATEGORY,
        description=str(row.get('description') or '').strip(),
    )


def parse_workbook(content: bytes) -> Tuple[List[TransactionCreate], List[str], int]:
    """
    Reads transactions from the first sheet of an .xlsx file.
    Returns (valid transactions, per-row error messages, number of rows skipped for missing date/amount).
    Raises ValueError if the file is not a readable workbook.
    """
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as e:
        logger.error(f"Could not open uploaded workbook: {e}")
        raise ValueError("Could not read file. Please upload a valid Excel (.xlsx) file.")

    transactions: List[TransactionCreate] = []
    errors: List[str] = []
    skipped = 0
    try:
        ws = wb.worksheets[0]
        rows = ws.iter_rows(values_only=True)
        header_row = next(rows, None)
        if not header_row:
            return transactions, errors, skipped
        headers = [
            REVERSE_HEADER_MAP.get(str(h).strip(), str(h).strip().lower()) if h is not None else ''
            for h in header_row
        ]

        for row_number, values in enumerate(rows, start=2):
            if values is None or all(v is None or str(v).strip() == '' for v in values):
                continue
            row = _normalize_row(headers, values)
            if not row.get('date') or not row.get('amount'):
                logger.warning(f"Skipping row {row_number}: missing date or amount.")
                skipped += 1
                continue
            try:
                transactions.append(_row_to_transaction(row))
            except (ValueError, TypeError, ValidationError) as e:
                logger.warning(f"Skipping row {row_number}: {e}")
                errors.append(f"Row {row_number}: {e}")
    finally:
        wb.close()

    logger.info(f"Parsed {len(transactions)} transactions from workbook, {skipped} skipped, {len(errors)} errors.")
    return transactions, errors, skipped
