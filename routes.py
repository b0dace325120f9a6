"""API Routes for transactions, statistics, AI helpers and Excel interchange"""
import logging
from datetime import date
from typing import List, Literal, Optional
from urllib.parse import quote

from fastapi import APIRouter, Body, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

import config
from dependencies import CurrentUserDep, TransactionsCollectionDep, limiter
from models.stats import (
    CalendarMonth,
    CategoryTotal,
    DayGroup,
    DayTotals,
    ParseRequest,
    ReportRequest,
    ReportResponse,
    SummaryStats,
)
from models.transaction import (
    EXPENSE_CATEGORIES,
    INCOME_CATEGORIES,
    Transaction,
    TransactionCreate,
    TransactionUpdate,
)
from services import ai_service, excel_service, stats_service, transactions_service
from utils.ai_agent import AIConfigurationError, AIServiceError

router = APIRouter()
logger = logging.getLogger(__name__)

TypeFilter = Optional[Literal['EXPENSE', 'INCOME']]


# --- Transactions ---

@router.get("/transactions", response_model=List[Transaction], summary="List Transactions", description="Returns the user's transactions, newest day first.")
async def get_transactions(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    start: Optional[date] = Query(None, description="First day to include (YYYY-MM-DD)."),
    end: Optional[date] = Query(None, description="Last day to include (YYYY-MM-DD)."),
    type: TypeFilter = Query(None, description="EXPENSE or INCOME."),
    search: Optional[str] = Query(None, description="Matches description, category, date or exact amount."),
) -> List[Transaction]:
    logger.info(f"GET /transactions called by {user.id} (start={start}, end={end}, type={type}, search={search!r})")
    try:
        return await transactions_service.list_transactions(
            collection, user.id, start=start, end=end, tx_type=type, search=search
        )
    except ConnectionError as ce:
        logger.error(f"Connection error fetching transactions: {ce}")
        raise HTTPException(status_code=503, detail=f"Database connection error: {ce}")


@router.post("/transactions", response_model=Transaction, summary="Create Transaction")
async def create_transaction(user: CurrentUserDep, collection: TransactionsCollectionDep, data: TransactionCreate) -> Transaction:
    logger.info(f"POST /transactions called by {user.id}: {data.type} {data.amount} {data.category}")
    try:
        return await transactions_service.create_transaction(collection, user.id, data)
    except ConnectionError as ce:
        logger.error(f"Connection error creating transaction: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))


@router.post("/transactions/batch", response_model=List[Transaction], summary="Create Several Transactions", description="Stores a list of transactions in one write, e.g. confirmed AI drafts.")
async def create_transactions_batch(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    items: List[TransactionCreate] = Body(...),
) -> List[Transaction]:
    logger.info(f"POST /transactions/batch called by {user.id} with {len(items)} items")
    if not items:
        raise HTTPException(status_code=400, detail="No transactions provided.")
    try:
        return await transactions_service.create_many_transactions(collection, user.id, items)
    except ConnectionError as ce:
        logger.error(f"Connection error creating transactions: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))


@router.get("/transactions/export", summary="Export to Excel", description="Downloads all of the user's transactions as an .xlsx file.")
async def export_transactions(user: CurrentUserDep, collection: TransactionsCollectionDep):
    try:
        transactions = await transactions_service.list_transactions(collection, user.id)
    except ConnectionError as ce:
        logger.error(f"Connection error exporting transactions: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    content = excel_service.export_transactions(transactions)
    filename = excel_service.export_filename(date.today())
    disposition = f"attachment; filename=\"export.xlsx\"; filename*=UTF-8''{quote(filename)}"
    return Response(content=content, media_type=excel_service.XLSX_MEDIA_TYPE, headers={"Content-Disposition": disposition})


@router.post("/transactions/import", summary="Import from Excel", description="Uploads an .xlsx file with 日期/分类/金额/类型/备注 columns and stores its rows.")
async def import_transactions(user: CurrentUserDep, collection: TransactionsCollectionDep, file: UploadFile = File(...)):
    logger.info(f"POST /transactions/import called by {user.id} for file: {file.filename}")
    try:
        if not (file.filename or "").lower().endswith(".xlsx"):
            logger.warning(f"Invalid file type attempted upload: {file.filename} ({file.content_type})")
            raise HTTPException(status_code=400, detail=f"Invalid file type: {file.content_type}. Please upload an .xlsx file.")
        content = await file.read()
        if not content:
            raise HTTPException(status_code=400, detail="File is empty.")
        try:
            parsed, errors, skipped = excel_service.parse_workbook(content)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))
        if not parsed:
            raise HTTPException(
                status_code=400,
                detail={"status": "error", "message": "No valid rows found in file.", "errors": errors, "skippedCount": skipped},
            )
        try:
            created = await transactions_service.create_many_transactions(collection, user.id, parsed)
        except ConnectionError as ce:
            logger.error(f"ConnectionError importing file {file.filename}: {ce}")
            raise HTTPException(status_code=503, detail=str(ce))
        result = {
            "status": "partial_success" if errors else "success",
            "addedCount": len(created),
            "skippedCount": skipped,
            "errors": errors,
            "transactions": [t.model_dump(mode="json", by_alias=True) for t in created],
        }
        logger.info(f"File {file.filename} imported. Added {len(created)}, skipped {skipped}, errors {len(errors)}.")
        return result
    finally:
        await file.close()


@router.get("/transactions/{transaction_id}", response_model=Transaction, summary="Get Transaction")
async def get_transaction(transaction_id: str, user: CurrentUserDep, collection: TransactionsCollectionDep) -> Transaction:
    try:
        transaction = await transactions_service.get_transaction(collection, user.id, transaction_id)
    except ConnectionError as ce:
        raise HTTPException(status_code=503, detail=str(ce))
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.put("/transactions/{transaction_id}", response_model=Transaction, summary="Update Transaction")
async def update_transaction(
    transaction_id: str,
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    data: TransactionUpdate,
) -> Transaction:
    logger.info(f"PUT /transactions/{transaction_id} called by {user.id}")
    try:
        updated = await transactions_service.update_transaction(collection, user.id, transaction_id, data)
    except ConnectionError as ce:
        logger.error(f"Connection error updating transaction: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    if updated is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return updated


@router.delete("/transactions/{transaction_id}", summary="Delete Transaction")
async def delete_transaction(transaction_id: str, user: CurrentUserDep, collection: TransactionsCollectionDep):
    logger.info(f"DELETE /transactions/{transaction_id} called by {user.id}")
    try:
        deleted = await transactions_service.delete_transaction(collection, user.id, transaction_id)
    except ConnectionError as ce:
        logger.error(f"Connection error deleting transaction: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    if not deleted:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"success": True}


@router.get("/categories", summary="Category Lists")
async def get_categories():
    return {"expense": EXPENSE_CATEGORIES, "income": INCOME_CATEGORIES}


# --- Statistics ---

async def _load(collection, user_id: str, start: Optional[date] = None, end: Optional[date] = None, search: Optional[str] = None) -> List[Transaction]:
    try:
        return await transactions_service.list_transactions(collection, user_id, start=start, end=end, search=search)
    except ConnectionError as ce:
        logger.error(f"Connection error loading transactions for stats: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))


@router.get("/stats/summary", response_model=SummaryStats, summary="Income, Expense and Balance")
async def get_summary(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
) -> SummaryStats:
    return stats_service.summarize(await _load(collection, user.id, start, end))


@router.get("/stats/categories", response_model=List[CategoryTotal], summary="Totals per Category")
async def get_category_totals(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    type: Literal['EXPENSE', 'INCOME'] = Query('EXPENSE'),
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
) -> List[CategoryTotal]:
    return stats_service.category_breakdown(await _load(collection, user.id, start, end), type)


@router.get("/stats/daily", response_model=List[DayTotals], summary="Recent Daily Totals", description="Income and expense for the most recent days that have transactions.")
async def get_daily_totals(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    days: int = Query(7, ge=1, le=366),
) -> List[DayTotals]:
    return stats_service.recent_daily_totals(await _load(collection, user.id), days)


@router.get("/stats/calendar", response_model=CalendarMonth, summary="Month Calendar")
async def get_calendar(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
) -> CalendarMonth:
    today = date.today()
    year = year or today.year
    month = month or today.month
    start, end = stats_service.get_date_range('monthly', date(year, month, 1))
    return stats_service.month_calendar(await _load(collection, user.id, start, end), year, month)


@router.get("/stats/grouped", response_model=List[DayGroup], summary="Transactions Grouped by Day")
async def get_grouped(
    user: CurrentUserDep,
    collection: TransactionsCollectionDep,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    search: Optional[str] = Query(None),
) -> List[DayGroup]:
    return stats_service.group_by_date(await _load(collection, user.id, start, end, search))


# --- AI ---

@router.post("/ai/parse", summary="Parse Transactions with AI", description="Extracts transactions from free text or a receipt image.")
@limiter.limit(lambda: config.AI_RATE_LIMIT)
async def parse_with_ai(request: Request, payload: ParseRequest, user: CurrentUserDep, collection: TransactionsCollectionDep):
    save_at_front = request.state.save_at_front
    logger.info(f"POST /ai/parse called by {user.id} (image: {bool(payload.image)}) - SaveAtFront: {save_at_front}")
    try:
        result = await ai_service.parse_transactions(
            collection,
            user.id,
            text=payload.input,
            image=payload.image,
            mime_type=payload.mime_type,
            save_at_front=save_at_front,
        )
    except AIConfigurationError:
        raise HTTPException(status_code=500, detail="Server configuration error")
    except AIServiceError as e:
        logger.error(f"AI parsing failed: {e}")
        raise HTTPException(status_code=500, detail="AI Service Error")
    except ValueError as ve:
        raise HTTPException(status_code=400, detail=str(ve))
    except ConnectionError as ce:
        logger.error(f"ConnectionError saving parsed transactions: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
    return [item.model_dump(mode="json", by_alias=True) for item in result]


@router.post("/ai/report", response_model=ReportResponse, summary="AI Financial Report", description="Writes a weekly or monthly summary of the user's finances.")
@limiter.limit(lambda: config.AI_RATE_LIMIT)
async def report_with_ai(request: Request, payload: ReportRequest, user: CurrentUserDep, collection: TransactionsCollectionDep) -> ReportResponse:
    logger.info(f"POST /ai/report called by {user.id}: {payload.type} around {payload.date}")
    try:
        return await ai_service.generate_report(collection, user.id, payload.type, payload.date)
    except AIConfigurationError:
        raise HTTPException(status_code=500, detail="Server configuration error")
    except AIServiceError as e:
        logger.error(f"AI report failed: {e}")
        raise HTTPException(status_code=500, detail="AI Service Error")
    except ConnectionError as ce:
        logger.error(f"ConnectionError loading report data: {ce}")
        raise HTTPException(status_code=503, detail=str(ce))
