from datetime import date

import pytest

import config
import main
from conftest import make_payload
from utils import ai_agent


@pytest.fixture
def model(monkeypatch):
    """Stubs the model call; set `model.reply` and read `model.calls`."""
    class FakeModel:
        reply = "[]"
        calls = []

    async def fake_run_agent(agent, agent_input):
        FakeModel.calls.append((agent, agent_input))
        if isinstance(FakeModel.reply, Exception):
            raise FakeModel.reply
        return FakeModel.reply

    FakeModel.calls = []
    monkeypatch.setattr(config, "AI_API_KEY", "test-key")
    monkeypatch.setattr(ai_agent, "run_agent", fake_run_agent)
    return FakeModel


def test_parse_requires_login(client, model):
    assert client.post("/api/ai/parse", json={"input": "lunch 20"}).status_code == 401


def test_parse_requires_input(client, user, model):
    assert client.post("/api/ai/parse", json={}).status_code == 400
    assert client.post("/api/ai/parse", json={"input": "   "}).status_code == 400
    assert model.calls == []


def test_parse_text_returns_drafts(client, user, model):
    model.reply = (
        "```json\n"
        '[{"type": "EXPENSE", "amount": 328, "category": "餐饮", "date": "2025-12-02", "description": "火锅"},'
        ' {"type": "income", "amount": -5000, "category": "餐饮", "description": "工资"}]\n'
        "```"
    )

    response = client.post("/api/ai/parse", json={"input": "昨天晚上和朋友吃火锅花了328元, 今天发工资5000"})

    assert response.status_code == 200
    hotpot, salary = response.json()
    assert hotpot == {"amount": 328.0, "type": "EXPENSE", "category": "餐饮", "description": "火锅", "date": "2025-12-02"}
    assert salary["type"] == "INCOME"
    assert salary["amount"] == 5000.0
    assert salary["category"] == "其他"
    assert salary["date"] == date.today().isoformat()
    # Drafts are not stored while the client confirms them
    assert client.get("/api/transactions").json() == []

    agent, agent_input = model.calls[0]
    assert agent.model.model == config.AI_TEXT_MODEL
    assert agent_input.startswith("昨天晚上")
    assert date.today().isoformat() in agent.instructions


def test_parse_single_object_reply(client, user, model):
    model.reply = '{"type": "EXPENSE", "amount": 12, "category": "交通", "date": "2025-12-01", "description": "Metro"}'

    response = client.post("/api/ai/parse", json={"input": "metro 12"})

    assert [d["description"] for d in response.json()] == ["Metro"]


def test_parse_image_uses_vision_model(client, user, model):
    model.reply = '[{"type": "EXPENSE", "amount": 9.9, "category": "购物", "date": "2025-12-01", "description": "Receipt"}]'

    response = client.post("/api/ai/parse", json={"image": "data:image/png;base64,iVBORw0KGgo=", "mimeType": "image/png"})

    assert response.status_code == 200
    agent, agent_input = model.calls[0]
    assert agent.model.model == config.AI_VISION_MODEL
    image_part = agent_input[0]["content"][1]
    assert image_part["type"] == "input_image"
    assert image_part["image_url"] == "iVBORw0KGgo="


def test_parse_can_save_on_server(client, user, model):
    main.app_state["save_at_front"] = False
    model.reply = '[{"type": "EXPENSE", "amount": 20, "category": "餐饮", "date": "2025-12-01", "description": "Noodles"}]'

    response = client.post("/api/ai/parse", json={"input": "noodles 20"})

    assert response.status_code == 200
    saved = response.json()[0]
    assert saved["id"]
    assert [t["id"] for t in client.get("/api/transactions").json()] == [saved["id"]]


def test_parse_malformed_reply_is_service_error(client, user, model):
    model.reply = "Sorry, I could not find any transaction."

    response = client.post("/api/ai/parse", json={"input": "hello"})

    assert response.status_code == 500
    assert response.json()["detail"] == "AI Service Error"


@pytest.mark.parametrize("reply", ['[1, "x"]', "[]", '[{"type": "EXPENSE", "amount": "lots"}]'])
def test_parse_reply_without_usable_items_is_service_error(client, user, model, reply):
    model.reply = reply

    response = client.post("/api/ai/parse", json={"input": "hello"})

    assert response.status_code == 500
    assert response.json()["detail"] == "AI Service Error"
    assert client.get("/api/transactions").json() == []


def test_parse_model_failure_is_service_error(client, user, model):
    model.reply = ai_agent.AIServiceError("upstream 502")

    response = client.post("/api/ai/parse", json={"input": "lunch 20"})

    assert response.status_code == 500
    assert response.json()["detail"] == "AI Service Error"


def test_parse_without_api_key(client, user, model, monkeypatch):
    monkeypatch.setattr(config, "AI_API_KEY", None)

    response = client.post("/api/ai/parse", json={"input": "lunch 20"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Server configuration error"
    assert model.calls == []


def test_report_without_data_skips_model(client, user, model):
    response = client.post("/api/ai/report", json={"type": "weekly", "date": "2025-12-03"})

    assert response.status_code == 200
    body = response.json()
    assert body["report"] == "该时间段内没有记账记录，无法生成报告。请先记几笔账吧！"
    assert body["startDate"] == "2025-12-01"
    assert body["endDate"] == "2025-12-07"
    assert model.calls == []


def test_monthly_report_prompt_and_cleanup(client, user, model):
    client.post("/api/transactions", json=make_payload(amount=100, category="餐饮", date="2025-12-02"))
    client.post("/api/transactions", json=make_payload(amount=300, category="购物", date="2025-12-20"))
    client.post("/api/transactions", json=make_payload(amount=5000, type="INCOME", category="工资", date="2025-12-10"))
    client.post("/api/transactions", json=make_payload(amount=999, category="购物", date="2025-11-30"))
    model.reply = "```markdown\n**总览**: 不错\n```"

    response = client.post("/api/ai/report", json={"type": "monthly", "date": "2025-12-15"})

    assert response.status_code == 200
    assert response.json()["report"] == "**总览**: 不错"
    agent, prompt = model.calls[0]
    assert "月度财务报告" in prompt
    assert "2025-12-01 至 2025-12-31" in prompt
    assert "总收入: 5000.00" in prompt
    assert "总支出: 400.00" in prompt
    assert "净结余: 4600.00" in prompt
    assert "购物: 300.00, 餐饮: 100.00" in prompt
    assert "交易笔数: 3" in prompt
    assert agent.model_settings.temperature == 0.7


def test_report_rejects_bad_parameters(client, user, model):
    assert client.post("/api/ai/report", json={"type": "yearly", "date": "2025-12-15"}).status_code == 400
    assert client.post("/api/ai/report", json={"type": "weekly"}).status_code == 400


def test_strip_code_fences():
    assert ai_agent.strip_code_fences("```json\n[1]\n```") == "[1]"
    assert ai_agent.strip_code_fences("  plain  ") == "plain"


def test_parse_json_reply_rejects_non_objects():
    with pytest.raises(ai_agent.AIServiceError):
        ai_agent.parse_json_reply("42")
    with pytest.raises(ai_agent.AIServiceError):
        ai_agent.parse_json_reply("")
