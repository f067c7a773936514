from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

import orjson

from tradeledger.ingest.datasource import RawBatch


@dataclass(frozen=True, slots=True)
class JsonlBatchSource:
    """
    Raw transaction-log dumps, one JSON object per line.

    Each line is either a page as returned by the exchange:
      {"category":"option","list":[{...},{...}]}
    or a single raw record:
      {"category":"linear","symbol":"BTCUSDT","type":"TRADE",...}

    Order preserved. Blank lines ignored. `default_category` applies when a
    line names none.
    """

    path: Path
    default_category: str = ""

    def __iter__(self) -> Iterator[RawBatch]:
        with self.path.open("rb") as f:
            for line_no, line in enumerate(f, start=1):
                s = line.strip()
                if not s:
                    continue

                try:
                    obj = orjson.loads(s)
                except orjson.JSONDecodeError as e:
                    raise ValueError(f"invalid JSON on line {line_no}: {e}") from e

                if not isinstance(obj, Mapping):
                    raise ValueError(f"expected a JSON object on line {line_no}")

                category = obj.get("category")
                if not isinstance(category, str):
                    category = self.default_category

                records = obj.get("list")
                if records is None:
                    yield RawBatch(category=category, records=(obj,))
                    continue

                if not isinstance(records, list):
                    raise ValueError(f"'list' must be a list on line {line_no}")
                yield RawBatch(category=category, records=tuple(records))
