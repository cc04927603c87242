"""DEV mode storage: save payloads with unresolved fields to data/dev/."""
import logging
from pathlib import Path
from typing import Any, Optional
import orjson

from favsync.config import DEV_DIR
from favsync.parse.redact import redact_json, redact_string

logger = logging.getLogger(__name__)


class DevStorage:
    """Keeps raw payloads around so schema drift can be inspected."""

    def __init__(self, dev_dir: Optional[Path] = None):
        self.dev_dir = Path(dev_dir or DEV_DIR)
        self.dev_dir.mkdir(parents=True, exist_ok=True)

    def save_unresolved(
        self,
        external_id: str,
        missing: list[str],
        payload: Any = None,
        html: Optional[str] = None,
    ) -> Path:
        """Write the redacted payload (and page, if any) for one item."""
        item_dir = self.dev_dir / str(external_id)
        item_dir.mkdir(exist_ok=True)

        summary = {"external_id": external_id, "missing": missing}
        (item_dir / "summary.json").write_bytes(orjson.dumps(summary, option=orjson.OPT_INDENT_2))

        if payload is not None:
            payload_path = item_dir / "payload.json"
            payload_path.write_bytes(
                orjson.dumps(redact_json(payload), option=orjson.OPT_INDENT_2, default=str)
            )
            logger.info(f"Saved unresolved payload to {payload_path}")

        if html:
            html_path = item_dir / "page.html"
            html_path.write_text(redact_string(html), encoding="utf-8")
            logger.debug(f"Saved HTML to {html_path}")
        return item_dir
