"""
Spending Insight Agent

DESIGN DECISION: The model only DESCRIBES the user's own expense data.
It suggests a chart type and the insights that chart should convey;
it never writes to the ledger.

BOUNDARIES:
- No expenses: answer locally, without calling the model
- Model failure: generic message, the error is logged and audited
- Only expense transactions are sent, as one JSON-encoded string
"""

import json
from typing import Any, Optional, Sequence

import google.generativeai as genai
import structlog

from sumbook.audit import AuditLogger
from sumbook.config import GeminiSettings, get_settings
from sumbook.models import AuditEventBuilder, Category, Transaction


logger = structlog.get_logger(__name__)

NO_EXPENSES_MESSAGE = (
    "Not enough expense data to generate insights. Please add some expenses first."
)
FAILURE_MESSAGE = (
    "An error occurred while analyzing your spending habits. Please try again later."
)


PROMPT_TEMPLATE = """You are an assistant specializing in visualizing spending habits.
Analyze the expense data below and write a textual description of a chart or report that visualizes it.

The expense data is provided as a JSON string:
{expense_data}

Suggest a chart type (for example a pie chart, bar chart or line graph) and describe the key insights the chart should convey.
Consider categories and amounts. If a few categories dominate, a pie chart is usually the clearest choice.

Do NOT draw the chart. Describe what it should look like and what it should show, in as much detail as possible.
Only use the numbers in the data; do not invent any."""


def expense_payload(
    transactions: Sequence[Transaction],
    categories: Sequence[Category] = (),
) -> list[dict[str, Any]]:
    """Expense transactions as plain dicts, with the category name alongside its id."""
    names = {c.id: c.name for c in categories}
    payload = []
    for tx in transactions:
        if not tx.is_expense:
            continue
        item = tx.model_dump(mode="json", by_alias=True, exclude={"user_id", "store_id"})
        item["category"] = names.get(tx.category_id, "Uncategorized")
        payload.append(item)
    return payload


class InsightAgent:
    """
    Generates a free-text description of the user's spending.

    A model object can be injected (anything with an async
    `generate_content_async(prompt)` returning an object with `.text`);
    otherwise a Gemini model is configured from settings.
    """

    def __init__(
        self,
        model: Optional[Any] = None,
        settings: Optional[GeminiSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._audit = audit_logger or AuditLogger()
        if model is not None:
            self._model = model
        else:
            self._settings = settings or get_settings().gemini
            self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        self._model = genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            }
        )

    async def generate(
        self,
        transactions: Sequence[Transaction],
        categories: Sequence[Category] = (),
        user_id: Optional[str] = None,
    ) -> str:
        """Describe a chart of the expenses and the insights it should convey."""
        expenses = expense_payload(transactions, categories)
        if not expenses:
            return NO_EXPENSES_MESSAGE

        prompt = PROMPT_TEMPLATE.format(expense_data=json.dumps(expenses))

        try:
            response = await self._model.generate_content_async(prompt)
            text = response.text.strip()
        except Exception as e:
            logger.error("insight_generation_failed", error=str(e), expense_count=len(expenses))
            await self._audit.log(
                AuditEventBuilder.external_service_error("gemini", str(e), user_id=user_id)
            )
            return FAILURE_MESSAGE

        if not text:
            return FAILURE_MESSAGE

        await self._audit.log(AuditEventBuilder.insight_generated(user_id, len(expenses)))
        return text
