"""Metrics exporter for observability."""
import time
from pathlib import Path
from typing import Any, Optional
import aiofiles
import orjson

from favsync.config import DATA_DIR

METRICS_FILE = DATA_DIR / "metrics.jsonl"


class MetricsExporter:
    """Appends sync and enrichment run summaries to a JSONL file."""

    def __init__(self, metrics_file: Optional[Path] = None):
        self.metrics_file = Path(metrics_file or METRICS_FILE)

    async def export(self, event: str, **fields: Any) -> None:
        record = {"ts": time.time(), "event": event, **fields}
        line = orjson.dumps(record, default=str).decode("utf-8") + "\n"
        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.metrics_file, "a") as f:
            await f.write(line)
