"""
Tape models and normalization.

Turns heterogeneous price/volume input (CSV, TSV or JSON) into an ordered,
validated list of tape points. Column names are resolved by pattern so the
simulator never sees the caller's schema.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import csv
import json
import re

from structlog import get_logger

from .errors import ComputeTimeoutError, EmptyTapeError, ParseError

logger = get_logger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
DEFAULT_VOLUME = Decimal("1")

# Epoch values at or above this magnitude are milliseconds
EPOCH_MILLIS_THRESHOLD = Decimal("1e11")

# "date" and "vol" only count as whole words: not last_update, not volatility
TIME_PATTERN = re.compile(r"^(t|ts)$|time|(?<![a-z])date(?![a-z])", re.IGNORECASE)
PRICE_PATTERN = re.compile(r"^(p|px|last|close)$|price", re.IGNORECASE)
VOLUME_PATTERN = re.compile(r"^(v|qty|quantity|amount)$|(?<![a-z])vol(ume)?(?![a-z])|size", re.IGNORECASE)

# Numbers must lie within 1e-150 .. 1e150 so that products of two of them
# still convert to a finite float
MAGNITUDE_LIMIT = 150


def coerce_decimal(value: Any) -> Optional[Decimal]:
    """Best-effort Decimal conversion. Returns None when the value is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def in_range(value: Optional[Decimal]) -> bool:
    """True for finite numbers that are zero or within the magnitude limit."""
    if value is None or not value.is_finite():
        return False
    return value.is_zero() or abs(value.adjusted()) <= MAGNITUDE_LIMIT


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 string or an epoch number into an aware UTC datetime.

    Epoch numbers are seconds, or milliseconds when their magnitude is at
    least 1e11. Naive datetimes are taken as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if value is None or isinstance(value, bool):
        return None

    text = str(value).strip()
    if not text:
        return None

    number = coerce_decimal(text)
    if number is not None:
        if not in_range(number):
            return None
        if abs(number) >= EPOCH_MILLIS_THRESHOLD:
            number = number / 1000
        try:
            return EPOCH + timedelta(microseconds=int(number * 1000000))
        except OverflowError:
            return None

    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(timestamp: datetime) -> str:
    """Render a tape timestamp as ISO 8601 UTC with a trailing Z."""
    return timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class TapePoint:
    """Single observation on the tape."""
    timestamp: datetime
    price: Decimal
    volume: Decimal

    def __post_init__(self):
        if isinstance(self.price, (int, float, str)):
            self.price = Decimal(str(self.price))
        if isinstance(self.volume, (int, float, str)):
            self.volume = Decimal(str(self.volume))

    @property
    def notional(self) -> Decimal:
        """Price times volume."""
        return self.price * self.volume

    def to_dict(self) -> dict:
        """Convert to dictionary (lossless, numbers as strings)."""
        return {
            "t": format_timestamp(self.timestamp),
            "price": str(self.price),
            "volume": str(self.volume),
        }


@dataclass
class ColumnMapping:
    """Which input header plays which role. None means the role is absent."""
    time: Optional[str] = None
    price: Optional[str] = None
    volume: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"time": self.time, "price": self.price, "volume": self.volume}


@dataclass
class NormalizedTape:
    """
    Result of normalization.

    Attributes:
        points: Tape points sorted ascending by timestamp
        columns: Header resolution that produced them
        dropped: Rows rejected for a bad price or timestamp
        repaired: Rows whose volume was replaced by the default
    """
    points: List[TapePoint] = field(default_factory=list)
    columns: ColumnMapping = field(default_factory=ColumnMapping)
    dropped: int = 0
    repaired: int = 0

    def __len__(self) -> int:
        return len(self.points)


def resolve_columns(header: Sequence[str]) -> ColumnMapping:
    """
    Map arbitrary headers onto the time/price/volume roles.

    Each role takes the first header matching its pattern. A header already
    claimed by an earlier role is skipped.
    """
    claimed = set()
    resolved = {}

    for role, pattern in (("time", TIME_PATTERN), ("price", PRICE_PATTERN), ("volume", VOLUME_PATTERN)):
        resolved[role] = None
        for name in header:
            if name in claimed:
                continue
            if pattern.search(str(name).strip()):
                resolved[role] = name
                claimed.add(name)
                break

    return ColumnMapping(**resolved)


def _collect_header(rows: Iterable[Mapping[str, Any]]) -> List[str]:
    """Ordered union of row keys."""
    header: List[str] = []
    seen = set()
    for row in rows:
        for key in row:
            if key not in seen:
                seen.add(key)
                header.append(key)
    return header


def _row_mappings(data: Iterable[Any]) -> Tuple[List[Mapping[str, Any]], List[str]]:
    rows = []
    for position, row in enumerate(data):
        if not isinstance(row, Mapping):
            raise ParseError(f"Tape row {position} is not an object: {row!r}")
        rows.append(row)
    return rows, _collect_header(rows)


def _unwrap(data: Any) -> List[Any]:
    """Accept a bare row array or an object wrapping one under "data" or "rows"."""
    if isinstance(data, Mapping):
        wrapped = data.get("data", data.get("rows"))
        if not isinstance(wrapped, list):
            raise ParseError("JSON tape object must wrap a list under 'data' or 'rows'")
        data = wrapped

    if not isinstance(data, (list, tuple)):
        raise ParseError(f"JSON tape must be an array, got {type(data).__name__}")
    return data


def _parse_json(text: str) -> Tuple[List[Mapping[str, Any]], List[str]]:
    # ValueError also covers integers past the interpreter's digit limit
    try:
        data = json.loads(text, parse_float=Decimal)
    except ValueError as e:
        raise ParseError(f"Invalid JSON tape: {e}") from e

    return _row_mappings(_unwrap(data))


def _parse_delimited(text: str) -> Tuple[List[Mapping[str, Any]], List[str]]:
    lines = [line for line in text.splitlines() if line.strip()]
    delimiter = "\t" if "\t" in lines[0] else ","

    try:
        reader = csv.reader(lines, delimiter=delimiter)
        header = [name.strip() for name in next(reader)]
        rows = [
            {name: value.strip() for name, value in zip(header, values)}
            for values in reader
        ]
    except csv.Error as e:
        raise ParseError(f"Invalid delimited tape: {e}") from e

    return rows, header


def parse_tape_text(text: Union[str, bytes]) -> Tuple[List[Mapping[str, Any]], List[str]]:
    """
    Decode raw tape text into row mappings plus the header they share.

    JSON is detected by a leading '[' or '{'; anything else is delimited
    text with a header row, tab separated when the header holds a tab and
    comma separated otherwise.

    Raises:
        ParseError: If the text cannot be decoded
    """
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Tape is not valid UTF-8: {e}") from e

    stripped = text.lstrip("\ufeff").strip()
    if not stripped:
        return [], []

    if stripped[0] in "[{":
        return _parse_json(stripped)
    return _parse_delimited(stripped)


def normalize_rows(
    rows: Sequence[Mapping[str, Any]],
    header: Optional[Sequence[str]] = None,
) -> NormalizedTape:
    """
    Coerce row mappings into a sorted tape.

    Rows with a non-positive price, a price outside 1e-150 .. 1e150, or an
    unparseable timestamp are dropped. Bad, missing or out-of-range volumes
    are repaired to 1 so the time density of the tape is preserved. Without
    a time column, rows are stamped one second apart from the epoch in
    input order.

    Raises:
        EmptyTapeError: If no row survives
        ParseError: If rows exist but no price column can be resolved
    """
    if header is None:
        header = _collect_header(rows)

    if not rows:
        raise EmptyTapeError("Tape has no rows")

    columns = resolve_columns(header)
    if columns.price is None:
        raise ParseError(f"No price column found in header {list(header)}")

    points: List[TapePoint] = []
    dropped = 0
    repaired = 0

    for position, row in enumerate(rows):
        price = coerce_decimal(row.get(columns.price))
        if not in_range(price) or price <= 0:
            dropped += 1
            continue

        if columns.time is None:
            timestamp = EPOCH + timedelta(seconds=position)
        else:
            timestamp = parse_timestamp(row.get(columns.time))
            if timestamp is None:
                dropped += 1
                continue

        volume = coerce_decimal(row.get(columns.volume)) if columns.volume else None
        if not in_range(volume) or volume <= 0:
            if columns.volume is not None:
                repaired += 1
            volume = DEFAULT_VOLUME

        points.append(TapePoint(timestamp=timestamp, price=price, volume=volume))

    if not points:
        raise EmptyTapeError(f"No valid rows in tape ({dropped} dropped)")

    # list.sort is stable: equal timestamps keep input order
    points.sort(key=lambda p: p.timestamp)

    logger.debug(
        "tape_normalized",
        rows=len(points),
        dropped=dropped,
        repaired=repaired,
        columns=columns.to_dict(),
    )

    return NormalizedTape(points=points, columns=columns, dropped=dropped, repaired=repaired)


def normalize_tape(
    payload: Union[str, bytes, Sequence[Mapping[str, Any]], Mapping[str, Any], None],
    max_rows: Optional[int] = None,
) -> NormalizedTape:
    """
    Normalize raw text or already-decoded rows into a tape.

    Args:
        payload: CSV/TSV/JSON text, a list of row mappings, or an object
            wrapping that list under "data" or "rows"
        max_rows: Reject inputs with more raw rows than this

    Raises:
        ParseError, EmptyTapeError, ComputeTimeoutError
    """
    if payload is None:
        rows, header = [], []
    elif isinstance(payload, (str, bytes)):
        rows, header = parse_tape_text(payload)
    else:
        rows, header = _row_mappings(_unwrap(payload))

    if max_rows is not None and len(rows) > max_rows:
        raise ComputeTimeoutError(
            f"Tape has {len(rows)} rows, limit is {max_rows}",
            size_exceeded=True,
        )

    return normalize_rows(rows, header)
