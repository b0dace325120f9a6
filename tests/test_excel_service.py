import io
from datetime import date, datetime

import openpyxl
import pytest

from conftest import make_payload
from models.transaction import Transaction
from services import excel_service


def _workbook_bytes(rows):
    wb = openpyxl.Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _tx(**fields):
    base = dict(id="t1", user_id="u1", amount=45.5, type="EXPENSE", category="餐饮",
                description="Lunch", date=date(2025, 12, 3), created_at=1)
    base.update(fields)
    return Transaction(**base)


def test_export_layout():
    content = excel_service.export_transactions([_tx(), _tx(id="t2", type="INCOME", category="工资", amount=9000, description="")])

    ws = openpyxl.load_workbook(io.BytesIO(content)).active
    assert ws.title == "收支明细"
    rows = list(ws.iter_rows(values_only=True))
    assert rows[0] == ("日期", "类型", "分类", "金额", "备注")
    assert rows[1] == ("2025-12-03", "支出", "餐饮", 45.5, "Lunch")
    assert rows[2][1] == "收入"


def test_export_then_import_preserves_fields():
    original = [
        _tx(),
        _tx(id="t2", type="INCOME", category="工资", amount=9000.25, description="December", date=date(2025, 12, 10)),
    ]

    parsed, errors, skipped = excel_service.parse_workbook(excel_service.export_transactions(original))

    assert errors == [] and skipped == 0
    assert [(p.date, p.amount, p.category, p.type, p.description) for p in parsed] == [
        (t.date, t.amount, t.category, t.type, t.description) for t in original
    ]


def test_import_coerces_cells():
    content = _workbook_bytes([
        ["日期", "金额", "分类", "类型", "备注", "Extra"],
        [datetime(2025, 1, 5), -12.5, None, "INCOME", None, "x"],
        ["2025/01/06", "30", "交通", "支出", "bus", None],
        [None, 10, "餐饮", "支出", "no date", None],
        ["2025-01-07", 0, "餐饮", "支出", "zero", None],
        ["someday", 5, "餐饮", "支出", "bad date", None],
        [None, None, None, None, None, None],
    ])

    parsed, errors, skipped = excel_service.parse_workbook(content)

    assert len(parsed) == 2
    first, second = parsed
    assert (first.date, first.amount, first.type, first.category, first.description) == (date(2025, 1, 5), 12.5, "INCOME", "其他", "")
    assert (second.date, second.amount, second.type, second.category) == (date(2025, 1, 6), 30.0, "EXPENSE", "交通")
    assert skipped == 2
    assert len(errors) == 1 and errors[0].startswith("Row 6")


def test_import_rejects_non_workbook():
    with pytest.raises(ValueError):
        excel_service.parse_workbook(b"not a zip file")


def test_export_endpoint(client, user):
    client.post("/api/transactions", json=make_payload())

    response = client.get("/api/transactions/export")

    assert response.status_code == 200
    assert response.headers["content-type"] == excel_service.XLSX_MEDIA_TYPE
    assert "filename*=UTF-8''AI%E8%AE%B0%E8%B4%A6%E6%9C%AC_" in response.headers["content-disposition"]
    rows = list(openpyxl.load_workbook(io.BytesIO(response.content)).active.iter_rows(values_only=True))
    assert rows[1][0] == "2025-12-03"


def test_import_endpoint(client, user):
    content = _workbook_bytes([
        ["日期", "分类", "金额", "类型", "备注"],
        ["2025-12-01", "餐饮", 20, "支出", "Noodles"],
        ["2025-12-02", "工资", 8000, "收入", "Pay"],
        [None, "餐饮", 1, "支出", "skipped"],
    ])

    response = client.post(
        "/api/transactions/import",
        files={"file": ("ledger.xlsx", content, excel_service.XLSX_MEDIA_TYPE)},
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "success"
    assert body["addedCount"] == 2
    assert body["skippedCount"] == 1
    listed = client.get("/api/transactions").json()
    assert [(t["date"], t["type"], t["amount"]) for t in listed] == [
        ("2025-12-02", "INCOME", 8000.0),
        ("2025-12-01", "EXPENSE", 20.0),
    ]


def test_import_endpoint_rejects_other_files(client, user):
    response = client.post("/api/transactions/import", files={"file": ("ledger.csv", b"a,b", "text/csv")})
    assert response.status_code == 400


def test_import_endpoint_without_valid_rows(client, user):
    content = _workbook_bytes([["日期", "金额"], [None, None], ["2025-12-01", None]])
    response = client.post("/api/transactions/import", files={"file": ("empty.xlsx", content, excel_service.XLSX_MEDIA_TYPE)})
    assert response.status_code == 400
