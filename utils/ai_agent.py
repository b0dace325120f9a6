"""Utility functions for calling the hosted language model through the Agents SDK."""
import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Union

from openai import AsyncOpenAI

# Import from agents SDK
from agents import Agent, ModelSettings, OpenAIChatCompletionsModel, Runner, set_tracing_disabled

import config
from models.transaction import EXPENSE_CATEGORIES, INCOME_CATEGORIES

logger = logging.getLogger(__name__)

# Traces would be exported to OpenAI, which is not the provider here
set_tracing_disabled(True)

WEEKDAYS = ['星期一', '星期二', '星期三', '星期四', '星期五', '星期六', '星期日']

_CODE_FENCE = re.compile(r"```(?:json|markdown)?\n?")


class AIServiceError(Exception):
    """The model call failed or its reply could not be used."""


class AIConfigurationError(AIServiceError):
    """No API key is configured."""


# --- Prompts ---

def build_parse_instructions(today: date) -> str:
    """System prompt for turning free text or a receipt into transaction JSON."""
    return (
        f"Current Date: {today.isoformat()} ({WEEKDAYS[today.weekday()]}).\n"
        "Task: Extract transaction details.\n"
        "1. Default to current date if not specified.\n"
        "2. Calculate exact YYYY-MM-DD for relative dates like \"yesterday\".\n"
        "3. Infer amounts logically. Amounts are always positive numbers; use type to tell income from expense.\n"
        "4. type is EXPENSE or INCOME.\n"
        f"5. Expense category MUST be one of: {', '.join(EXPENSE_CATEGORIES)}.\n"
        f"6. Income category MUST be one of: {', '.join(INCOME_CATEGORIES)}.\n"
        "Please return the result in JSON format directly. Example: "
        "[{\"type\": \"EXPENSE\", \"amount\": 45.00, \"category\": \"餐饮\", "
        f"\"date\": \"{today.isoformat()}\", \"description\": \"Lunch\"}}]"
    )


REPORT_SYSTEM_PROMPT = "你是一位专业的理财顾问。请始终使用简体中文回答。"


def build_report_prompt(
    period: str,
    start: date,
    end: date,
    total_income: float,
    total_expense: float,
    balance: float,
    top_categories: str,
    count: int,
) -> str:
    period_label = '周' if period == 'weekly' else '月'
    return (
        "角色: 专业的理财顾问 (AI 记账助手)。\n"
        f"任务: 为用户生成一份{period_label}度财务报告。\n"
        "语言: 必须使用简体中文 (Simplified Chinese)。\n"
        "语调: 专业、鼓励、乐于助人，带一点幽默感 (复古风格)。\n\n"
        "数据:\n"
        f"- 时间段: {start.isoformat()} 至 {end.isoformat()}\n"
        f"- 总收入: {total_income:.2f}\n"
        f"- 总支出: {total_expense:.2f}\n"
        f"- 净结余: {balance:.2f}\n"
        f"- 支出最高的类别: {top_categories or '无'}\n"
        f"- 交易笔数: {count}\n\n"
        "要求:\n"
        "1. **总览**: 简要总结财务状况。\n"
        "2. **分析**: 分析消费习惯。用户是否在某些类别上花费过多？\n"
        "3. **建议**: 基于数据给出3条具体、可执行的省钱或理财建议。\n"
        "4. **格式**: 使用 Markdown (加粗, 列表) 以提高可读性。不要输出 JSON。直接输出 Markdown 文本。"
    )


# --- Reply cleanup ---

def strip_code_fences(content: str) -> str:
    """Removes ```json / ```markdown / ``` fences the model likes to wrap replies in."""
    return _CODE_FENCE.sub("", content).strip()


def parse_json_reply(content: Optional[str]) -> List[Dict[str, Any]]:
    """Parses the model reply into a list of objects; a single object becomes a one-item list."""
    if not content:
        raise AIServiceError("No data returned from AI")
    cleaned = strip_code_fences(content)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON from AI: {e}. Reply was: {cleaned[:200]}")
        raise AIServiceError("Invalid JSON from AI")
    if isinstance(parsed, dict):
        return [parsed]
    if isinstance(parsed, list):
        items = [item for item in parsed if isinstance(item, dict)]
        dropped = len(parsed) - len(items)
        if dropped:
            logger.warning(f"Dropped {dropped} non-object elements from AI reply.")
        return items
    raise AIServiceError(f"Unexpected JSON type from AI: {type(parsed).__name__}")


# --- Agent plumbing ---

def _build_agent(name: str, instructions: str, model_name: str, temperature: float) -> Agent:
    if not config.AI_API_KEY:
        logger.error("AI_API_KEY (or GLM_API_KEY) not set. AI features are unavailable.")
        raise AIConfigurationError("Server configuration error")
    client = AsyncOpenAI(api_key=config.AI_API_KEY, base_url=config.AI_BASE_URL)
    return Agent(
        name=name,
        instructions=instructions,
        model=OpenAIChatCompletionsModel(model=model_name, openai_client=client),
        model_settings=ModelSettings(temperature=temperature),
    )


async def run_agent(agent: Agent, agent_input: Union[str, List[Dict[str, Any]]]) -> Optional[str]:
    """Single-shot model call. Any SDK or HTTP failure surfaces as AIServiceError."""
    try:
        result = await Runner.run(agent, input=agent_input)
    except Exception as e:
        logger.exception(f"An error occurred during Agent SDK processing: {e}")
        raise AIServiceError(f"Agent SDK processing failed: {e}")
    output = result.final_output
    return output if isinstance(output, str) else None


def _image_input(image: str, mime_type: Optional[str]) -> List[Dict[str, Any]]:
    # The provider takes bare base64; strip a data URL prefix if present
    base64_data = image.split(",", 1)[1] if image.startswith("data:") and "," in image else image
    logger.debug(f"Sending receipt image ({mime_type or 'unknown type'}, {len(base64_data)} base64 chars)")
    return [{
        "role": "user",
        "content": [
            {"type": "input_text", "text": "Analyze this receipt image and extract transaction details."},
            {"type": "input_image", "image_url": base64_data, "detail": "auto"},
        ],
    }]


# --- Main Processing Functions ---

async def extract_transactions(
    text: Optional[str] = None,
    image: Optional[str] = None,
    mime_type: Optional[str] = None,
    today: Optional[date] = None,
) -> List[Dict[str, Any]]:
    """
    Asks the model to extract transactions from free text or a receipt image.
    Returns raw dicts; validation against the transaction model happens in the service layer.
    """
    today = today or date.today()
    instructions = build_parse_instructions(today)
    if image:
        agent = _build_agent("ReceiptParser", instructions, config.AI_VISION_MODEL, 0.1)
        agent_input: Union[str, List[Dict[str, Any]]] = _image_input(image, mime_type)
    else:
        agent = _build_agent("TransactionParser", instructions, config.AI_TEXT_MODEL, 0.1)
        agent_input = text or ""
        logger.info(f"Sending text to AI agent (first 100 chars): {agent_input[:100]}")

    content = await run_agent(agent, agent_input)
    items = parse_json_reply(content)
    logger.info(f"AI agent returned {len(items)} items.")
    return items


async def write_report(prompt: str) -> str:
    """Generates the markdown financial report for an already-built prompt."""
    agent = _build_agent("FinancialAdvisor", REPORT_SYSTEM_PROMPT, config.AI_TEXT_MODEL, 0.7)
    content = await run_agent(agent, prompt)
    if not content:
        raise AIServiceError("Failed to generate report")
    return strip_code_fences(content)
