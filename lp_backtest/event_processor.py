"""
Snapshot records and loader for exported pool day/hour data

Reads subgraph `poolDayData` / `poolHourData` records saved locally as
JSONL, a JSON array, or a raw GraphQL response document.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

POOL_DATA_KEYS = ('poolDayDatas', 'poolHourDatas')

SECONDS_PER_DAY = 86400
SECONDS_PER_HOUR = 3600


@dataclass(frozen=True)
class Snapshot:
    """
    One pool observation (a day or an hour)

    Attributes:
        timestamp: Period start, unix seconds
        tick: Pool tick at the end of the period
        token0_price: USD price of the base asset (quote per base)
        token1_price: Inverse price (base per quote)
        fee_growth_global0_x128: Cumulative token0 fee growth, Q128
        fee_growth_global1_x128: Cumulative token1 fee growth, Q128
        high: Period high price, if known
        low: Period low price, if known
        liquidity: Pool in-range liquidity
        tvl_usd: Pool TVL in USD
        volume_usd: Period volume in USD
        fees_usd: Period fees in USD
    """
    timestamp: int
    tick: int
    token0_price: float
    token1_price: float
    fee_growth_global0_x128: int
    fee_growth_global1_x128: int
    high: Optional[float] = None
    low: Optional[float] = None
    liquidity: Optional[int] = None
    tvl_usd: float = 0.0
    volume_usd: float = 0.0
    fees_usd: float = 0.0

    @classmethod
    def from_subgraph(cls, record: Dict[str, Any]) -> 'Snapshot':
        """
        Parse a camelCase subgraph record with string numerics

        `date` marks a daily record, `periodStartUnix` an hourly one.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a numeric field cannot be parsed
        """
        if 'periodStartUnix' in record:
            timestamp = int(record['periodStartUnix'])
        else:
            timestamp = int(record['date'])

        return cls(
            timestamp=timestamp,
            tick=int(record['tick']),
            token0_price=float(record['token0Price']),
            token1_price=float(record['token1Price']),
            fee_growth_global0_x128=int(record['feeGrowthGlobal0X128']),
            fee_growth_global1_x128=int(record['feeGrowthGlobal1X128']),
            high=_optional_float(record.get('high')),
            low=_optional_float(record.get('low')),
            liquidity=_optional_int(record.get('liquidity')),
            tvl_usd=_optional_float(record.get('tvlUSD')) or 0.0,
            volume_usd=_optional_float(record.get('volumeUSD')) or 0.0,
            fees_usd=_optional_float(record.get('feesUSD')) or 0.0,
        )


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == '':
        return None
    return float(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    return int(value)


class SnapshotLoader:
    """Load pool snapshots from a local export"""

    def __init__(self, file_path: str):
        self.file_path = Path(file_path)
        if not self.file_path.exists():
            raise FileNotFoundError(f"Data file not found: {file_path}")

    def read_records(self) -> Iterator[Dict[str, Any]]:
        """Raw records, whatever the file layout"""
        text = self.file_path.read_text(encoding='utf-8')
        if not text.strip():
            return

        try:
            document = json.loads(text)
        except json.JSONDecodeError:
            document = None

        if isinstance(document, list):
            yield from document
            return
        if isinstance(document, dict) and 'data' in document:
            yield from _records_from_response(document)
            return

        # One JSON object per line
        for line_number, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping unparseable line %d in %s: %s", line_number, self.file_path, e)

    def read_snapshots(self) -> Iterator[Snapshot]:
        """Parsed snapshots in file order; malformed records are skipped"""
        for index, record in enumerate(self.read_records()):
            if not isinstance(record, dict):
                logger.warning("Skipping record %d in %s: not an object", index, self.file_path)
                continue
            try:
                yield Snapshot.from_subgraph(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed record %d in %s: %r", index, self.file_path, e)

    def load(self) -> List[Snapshot]:
        """All snapshots sorted by timestamp"""
        return sorted(self.read_snapshots(), key=lambda s: s.timestamp)

    def get_snapshots_in_range(
        self,
        start_timestamp: Optional[int] = None,
        end_timestamp: Optional[int] = None
    ) -> Iterator[Snapshot]:
        """Snapshots with start <= timestamp <= end (bounds optional)"""
        for snapshot in self.read_snapshots():
            if start_timestamp is not None and snapshot.timestamp < start_timestamp:
                continue
            if end_timestamp is not None and snapshot.timestamp > end_timestamp:
                continue
            yield snapshot

    def get_statistics(self) -> Dict[str, Any]:
        """Counts and value ranges over the whole file"""
        stats = {
            'total': 0,
            'timestamp_range': {'min': None, 'max': None},
            'tick_range': {'min': None, 'max': None},
            'price_range': {'min': None, 'max': None},
            'granularity': None,
        }

        timestamps = []
        for snapshot in self.read_snapshots():
            stats['total'] += 1
            timestamps.append(snapshot.timestamp)
            _widen(stats['timestamp_range'], snapshot.timestamp)
            _widen(stats['tick_range'], snapshot.tick)
            _widen(stats['price_range'], snapshot.token0_price)

        stats['granularity'] = infer_granularity(timestamps)
        return stats


def infer_granularity(timestamps: List[int]) -> Optional[str]:
    """'daily' or 'hourly' from the smallest gap between sorted timestamps"""
    ordered = sorted(set(timestamps))
    if len(ordered) < 2:
        return None

    smallest_gap = min(b - a for a, b in zip(ordered, ordered[1:]))
    if smallest_gap >= SECONDS_PER_DAY:
        return 'daily'
    if smallest_gap >= SECONDS_PER_HOUR:
        return 'hourly'
    return None


def _records_from_response(document: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    data = document.get('data') or {}
    for key in POOL_DATA_KEYS:
        if key in data:
            yield from data[key] or []
            return
    raise ValueError(f"Response has none of {POOL_DATA_KEYS}")


def _widen(bounds: Dict[str, Any], value: Any) -> None:
    if bounds['min'] is None or value < bounds['min']:
        bounds['min'] = value
    if bounds['max'] is None or value > bounds['max']:
        bounds['max'] = value
