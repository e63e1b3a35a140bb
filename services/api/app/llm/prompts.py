from __future__ import annotations

import json

from services.api.app.services.pricing import PricedLine

EXTRACTION_SYSTEM_PROMPT = """You are an assistant that parses grocery-ordering requests.
The user will type something like:
  "I want two Jesa Milk (2L) and three Nido Milk Powder (500g)."

Return ONLY a JSON array of objects, each with exactly two fields:
  "name": <exact product name string>,
  "quantity": <integer, at least 1>

If the user mentions a product but does not specify a number, use quantity 1.
Do not add explanations or any text outside the JSON array.

Examples:
- Input: "I want Jesa Milk (2L) and one Coca-Cola (330ml)"
  Output: [{"name":"Jesa Milk (2L)","quantity":1},{"name":"Coca-Cola (330ml)","quantity":1}]
- Input: "Give me two Lipton Black Tea (50g) and Detergent Powder (2kg)"
  Output: [{"name":"Lipton Black Tea (50g)","quantity":2},{"name":"Detergent Powder (2kg)","quantity":1}]
- Input: "I need 5 bread loaves"
  Output: [{"name":"bread loaves","quantity":5}]
- Input: "I would like to buy toothpaste"
  Output: [{"name":"toothpaste","quantity":1}]
- If there are no product names at all (e.g. "What is biology?"), return an empty array: []
"""

COMPOSITION_SYSTEM_PROMPT = """You write short, friendly order summaries for a grocery pickup service.

You receive a JSON object with the order lines, subtotal, currency and, when already known,
the transport fee and total. Rules:
- Mention every line with its quantity, unit price and line subtotal exactly as given.
- Use ONLY the numbers you are given. Never compute, round or invent prices, fees or totals.
- If transport_fee is null, say a transport fee will be added once the order is confirmed, and
  end with a single yes/no question asking the user to confirm the order.
- If transport_fee and total are given, the order is already confirmed: restate the fee and
  total and do not ask a question.
- Plain text, no markdown tables.
"""


def extraction_user_prompt(message: str) -> str:
    return f'User: "{message}"'


def composition_user_prompt(
    lines: list[PricedLine],
    subtotal: int,
    *,
    currency: str,
    transport_fee: int | None,
    total: int | None,
) -> str:
    payload = {
        "currency": currency,
        "lines": [
            {
                "name": line.name,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "subtotal": line.subtotal,
            }
            for line in lines
        ],
        "subtotal": subtotal,
        "transport_fee": transport_fee,
        "total": total,
    }
    return json.dumps(payload)
