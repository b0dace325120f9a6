"""Service layer for AI parsing of new transactions and AI financial reports."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Union

from motor.motor_asyncio import AsyncIOMotorCollection
from pydantic import ValidationError

from models.stats import ReportResponse
from models.transaction import FALLBACK_CATEGORY, Transaction, TransactionDraft, categories_for
from services import stats_service, transactions_service
from utils import ai_agent

logger = logging.getLogger(__name__)

NO_DATA_REPORT = '该时间段内没有记账记录，无法生成报告。请先记几笔账吧！'


def normalize_draft(item: Dict[str, Any], today: date) -> TransactionDraft:
    """
    Coerces one model-produced item into a draft.
    Missing or unreadable dates fall back to today; categories outside the type's list become the fallback.
    """
    data = dict(item)
    data.setdefault("description", "")
    data.setdefault("category", FALLBACK_CATEGORY)
    raw_date = data.get("date")
    try:
        data["date"] = date.fromisoformat(str(raw_date).strip()[:10]) if raw_date else today
    except ValueError:
        logger.warning(f"AI returned unreadable date '{raw_date}', using {today}.")
        data["date"] = today
    if not str(data.get("type") or "").strip():
        data["type"] = "EXPENSE"
    draft = TransactionDraft(**data)
    if draft.category not in categories_for(draft.type):
        logger.debug(f"Category '{draft.category}' not allowed for {draft.type}, using '{FALLBACK_CATEGORY}'.")
        draft.category = FALLBACK_CATEGORY
    return draft


async def parse_transactions(
    collection: AsyncIOMotorCollection,
    user_id: str,
    text: Optional[str],
    image: Optional[str],
    mime_type: Optional[str],
    save_at_front: bool,
    today: Optional[date] = None,
) -> List[Union[TransactionDraft, Transaction]]:
    """
    Runs the model over the input and validates what it returns.
    With save_at_front the drafts go back to the client for confirmation, otherwise they are stored here.
    """
    today = today or date.today()
    if not (text and text.strip()) and not image:
        raise ValueError("No input provided")

    items = await ai_agent.extract_transactions(text=text, image=image, mime_type=mime_type, today=today)

    drafts = []
    for item_index, item in enumerate(items):
        try:
            drafts.append(normalize_draft(item, today))
        except ValidationError as e:
            logger.warning(f"Skipping AI item #{item_index} due to validation error: {e}")
    if not drafts:
        raise ai_agent.AIServiceError("AI returned no usable transactions")
    logger.info(f"Parsed {len(drafts)} transactions for user {user_id} (SaveAtFront: {save_at_front}).")

    if save_at_front:
        return drafts
    return await transactions_service.create_many_transactions(collection, user_id, drafts)


async def generate_report(
    collection: AsyncIOMotorCollection,
    user_id: str,
    period: str,
    reference: date,
) -> ReportResponse:
    """Aggregates the period's transactions and asks the model for a written summary."""
    start, end = stats_service.get_date_range(period, reference)
    transactions = await transactions_service.list_transactions(collection, user_id, start=start, end=end)
    logger.info(f"Generating {period} report for user {user_id}: {start} to {end}, {len(transactions)} transactions.")

    if not transactions:
        return ReportResponse(report=NO_DATA_REPORT, type=period, start_date=start, end_date=end)

    summary = stats_service.summarize(transactions)
    prompt = ai_agent.build_report_prompt(
        period,
        start,
        end,
        total_income=summary.total_income,
        total_expense=summary.total_expense,
        balance=summary.balance,
        top_categories=stats_service.top_categories(transactions, limit=5),
        count=len(transactions),
    )
    report = await ai_agent.write_report(prompt)
    return ReportResponse(report=report, type=period, start_date=start, end_date=end)
