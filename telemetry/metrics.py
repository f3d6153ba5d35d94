from __future__ import annotations

import csv
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Tuple

from telemetry.logging_utils import get_logger

logger = get_logger(__name__)

CSV_COLUMNS = [
    "timestamp",
    "component",
    "model_or_tool",
    "tokens_in",
    "tokens_out",
    "latency_ms",
    "cost_usd",
]

# Approximate per-1K token pricing in USD.
MODEL_PRICING_PER_1K = {
    "gpt-4o": {"input": 0.005, "output": 0.015},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4.1-mini": {"input": 0.0004, "output": 0.0016},
}

_csv_lock = threading.Lock()


def _csv_path() -> Optional[Path]:
    raw = os.getenv("METRICS_CSV_PATH")
    return Path(raw) if raw else None


def estimate_openai_cost(model: Optional[str], tokens_in: Optional[int], tokens_out: Optional[int]) -> Optional[float]:
    """Rudimentary USD cost estimate using static per-1K token pricing."""
    if model is None:
        return None
    pricing = MODEL_PRICING_PER_1K.get(model.lower())
    if pricing is None:
        return None
    cost = 0.0
    if tokens_in:
        cost += (tokens_in / 1000.0) * pricing["input"]
    if tokens_out:
        cost += (tokens_out / 1000.0) * pricing["output"]
    return round(cost, 6)


def extract_usage_tokens(obj: Any) -> Tuple[Optional[int], Optional[int]]:
    """Pull (prompt, completion) token counts from a chat response dict or object."""
    usage = obj.get("usage") if isinstance(obj, dict) else getattr(obj, "usage", None)
    if usage is None:
        return None, None
    if isinstance(usage, dict):
        return usage.get("prompt_tokens"), usage.get("completion_tokens")
    return getattr(usage, "prompt_tokens", None), getattr(usage, "completion_tokens", None)


def _append_csv(path: Path, row: dict) -> None:
    with _csv_lock:
        new_file = not path.exists()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            if new_file:
                writer.writeheader()
            writer.writerow({k: ("" if v is None else v) for k, v in row.items()})


def log_metric(
    component: str,
    model_or_tool: Optional[str],
    *,
    tokens_in: Optional[int] = None,
    tokens_out: Optional[int] = None,
    latency_ms: Optional[float] = None,
    cost_usd: Optional[float] = None,
) -> dict:
    """Emit a metric log record and append it to the CSV sink when configured."""
    computed_cost = cost_usd if cost_usd is not None else estimate_openai_cost(model_or_tool, tokens_in, tokens_out)
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "model_or_tool": model_or_tool or "",
        "tokens_in": tokens_in,
        "tokens_out": tokens_out,
        "latency_ms": round(latency_ms, 3) if latency_ms is not None else None,
        "cost_usd": computed_cost,
    }
    logger.info("metric", extra={k: v for k, v in row.items() if k != "timestamp"})

    path = _csv_path()
    if path is not None:
        try:
            _append_csv(path, row)
        except OSError:
            logger.warning("metric_csv_write_failed", extra={"path": str(path)})
    return row


@dataclass
class MetricTimer:
    component: str
    model_or_tool: Optional[str]
    _start: float = field(default_factory=time.perf_counter)

    def done(
        self,
        *,
        tokens_in: Optional[int] = None,
        tokens_out: Optional[int] = None,
        cost_usd: Optional[float] = None,
    ) -> dict:
        latency_ms = (time.perf_counter() - self._start) * 1000
        return log_metric(
            self.component,
            self.model_or_tool,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            latency_ms=latency_ms,
            cost_usd=cost_usd,
        )


def start_timer(component: str, model_or_tool: Optional[str]) -> MetricTimer:
    """Convenience helper to measure elapsed time + submit a metric."""
    return MetricTimer(component=component, model_or_tool=model_or_tool)
