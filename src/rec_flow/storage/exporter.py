"""Exports verified items and similarity rankings to various formats."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Union

import numpy as np
import pandas as pd

from ..models import ExportError

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("jsonl", "csv", "parquet")


class ResultExporter:
    """Exports flat result rows (one dict per verified item or score) to disk."""

    def __init__(self, rows: List[Dict[str, Any]]):
        """Initialize exporter with result rows.

        Args:
            rows: Rows to export, typically ``VerifiedContentItem.to_dict()`` output
        """
        self.rows = rows
        if not self.rows:
            logger.warning("No rows to export")

    def _serialize_value(self, value: Any) -> Any:
        """Convert values to JSON-serializable format."""
        if isinstance(value, pd.Timestamp):
            return value.isoformat()
        elif isinstance(value, np.integer):
            return int(value)
        elif isinstance(value, np.floating):
            return float(value)
        elif isinstance(value, np.ndarray):
            return value.tolist()
        elif isinstance(value, (set, frozenset)):
            return sorted(value)
        elif isinstance(value, dict):
            return {k: self._serialize_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [self._serialize_value(item) for item in value]
        return value

    def _flatten_lists(self, value: Any) -> Any:
        """Join list values so they fit in a single CSV cell."""
        if isinstance(value, (list, tuple, set, frozenset)):
            return ", ".join(str(item) for item in sorted(value))
        return value

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([{k: self._serialize_value(v) for k, v in r.items()} for r in self.rows])

    def to_jsonl(self, output_path: Union[str, Path]) -> int:
        """Export to JSONL (JSON Lines) format.

        Returns:
            Number of rows exported
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        rows_written = 0
        with open(output_path, "w", encoding="utf-8") as f:
            for row in self.rows:
                serializable_row = {k: self._serialize_value(v) for k, v in row.items()}
                f.write(json.dumps(serializable_row, ensure_ascii=False) + "\n")
                rows_written += 1

        logger.info(f"Exported {rows_written} rows to JSONL: {output_path}")
        return rows_written

    def to_csv(self, output_path: Union[str, Path]) -> int:
        """Export to CSV, joining list columns with commas."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        df = self.to_dataframe()
        for column in df.columns:
            df[column] = df[column].map(self._flatten_lists)
        df.to_csv(output_path, index=False)

        logger.info(f"Exported {len(df)} rows to CSV: {output_path}")
        return len(df)

    def to_parquet(self, output_path: Union[str, Path]) -> int:
        """Export to Parquet through pyarrow."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        df = self.to_dataframe()
        try:
            df.to_parquet(output_path, engine="pyarrow", index=False)
        except (ValueError, TypeError, ImportError) as e:
            raise ExportError(f"Parquet export failed: {e}") from e

        logger.info(f"Exported {len(df)} rows to Parquet: {output_path}")
        return len(df)

    def export(self, fmt: str, output_path: Union[str, Path]) -> int:
        if fmt not in SUPPORTED_FORMATS:
            raise ExportError(f"Unsupported format {fmt!r}; choose from {', '.join(SUPPORTED_FORMATS)}")
        return getattr(self, f"to_{fmt}")(output_path)
