from __future__ import annotations

import json
import socket
import urllib.error
import urllib.request
from typing import Any

from services.api.app.llm.base import LanguageModelError, LanguageModelTimeoutError


def post_json(
    url: str,
    body: dict[str, Any],
    *,
    headers: dict[str, str],
    timeout_s: float,
    provider: str,
) -> dict[str, Any]:
    req = urllib.request.Request(url, method="POST")
    req.add_header("Content-Type", "application/json")
    for key, value in headers.items():
        req.add_header(key, value)

    try:
        with urllib.request.urlopen(
            req, data=json.dumps(body).encode("utf-8"), timeout=timeout_s
        ) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raw = e.read().decode("utf-8", errors="replace")
        raise LanguageModelError(f"{provider} HTTP {e.code}: {raw}") from e
    except urllib.error.URLError as e:
        if isinstance(e.reason, (TimeoutError, socket.timeout)):
            raise LanguageModelTimeoutError(timeout_s) from e
        raise LanguageModelError(f"{provider} unreachable: {e.reason}") from e
    except (TimeoutError, socket.timeout) as e:
        raise LanguageModelTimeoutError(timeout_s) from e
    except json.JSONDecodeError as e:
        raise LanguageModelError(f"{provider} returned a non-JSON body") from e

    if not isinstance(payload, dict):
        raise LanguageModelError(f"Unexpected {provider} response shape: {payload!r}")
    return payload
