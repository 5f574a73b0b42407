"""Tests for ResultExporter."""

import json
import shutil
import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from rec_flow.models import ExportError, MediaType, VerifiedContentItem
from rec_flow.storage import ResultExporter


@pytest.fixture
def temp_dir():
    path = tempfile.mkdtemp()
    yield Path(path)
    shutil.rmtree(path)


@pytest.fixture
def rows():
    items = [
        VerifiedContentItem(
            id="tt0113277",
            title="Heat",
            year=1995,
            genres=frozenset({"Crime", "Drama"}),
            runtime=170,
            vote_average=8.3,
            keywords=frozenset({"heist"}),
        ),
        VerifiedContentItem(
            id="tt2085059",
            title="Black Mirror",
            media_type=MediaType.TV,
            keywords=frozenset({"technology"}),
        ),
    ]
    return [item.to_dict() for item in items]


class TestResultExporter:
    def test_jsonl(self, rows, temp_dir):
        output = temp_dir / "out" / "results.jsonl"

        count = ResultExporter(rows).to_jsonl(output)

        lines = output.read_text().splitlines()
        assert count == 2
        first = json.loads(lines[0])
        assert first["genres"] == ["Crime", "Drama"]
        assert json.loads(lines[1])["media_type"] == "tv"

    def test_csv_flattens_lists(self, rows, temp_dir):
        output = temp_dir / "results.csv"

        ResultExporter(rows).to_csv(output)

        df = pd.read_csv(output)
        assert list(df["title"]) == ["Heat", "Black Mirror"]
        assert df.loc[0, "genres"] == "Crime, Drama"

    def test_parquet(self, rows, temp_dir):
        output = temp_dir / "results.parquet"

        count = ResultExporter(rows).export("parquet", output)

        df = pd.read_parquet(output)
        assert count == 2
        assert list(df["id"]) == ["tt0113277", "tt2085059"]

    def test_numpy_values_serialized(self, temp_dir):
        output = temp_dir / "np.jsonl"
        ResultExporter([{"score": np.float64(0.5), "rank": np.int64(1), "v": np.array([1, 2])}]).to_jsonl(output)

        assert json.loads(output.read_text()) == {"score": 0.5, "rank": 1, "v": [1, 2]}

    def test_unsupported_format(self, rows, temp_dir):
        with pytest.raises(ExportError):
            ResultExporter(rows).export("xml", temp_dir / "x.xml")

    def test_empty_rows(self, temp_dir):
        assert ResultExporter([]).to_jsonl(temp_dir / "empty.jsonl") == 0
