"""Position store: the user's holdings, one row per security code."""
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List

import duckdb

from portfolio_tracker.core.db import cursor
from portfolio_tracker.core.errors import PositionValidationError
from portfolio_tracker.core.models import Position


_COLUMNS = "id, code, name, cost_price, shares, created_at, updated_at"

# Range of the DECIMAL(18, 8) columns
MIN_AMOUNT = Decimal("0.00000001")
MAX_AMOUNT = Decimal("10000000000")


def _to_position(row) -> Position:
    pid, code, name, cost_price, shares, created_at, updated_at = row
    return Position(
        id=pid,
        code=code,
        name=name,
        cost_price=Decimal(str(cost_price)),
        shares=Decimal(str(shares)),
        created_at=created_at,
        updated_at=updated_at,
    )


def _positive_decimal(value, field_name: str) -> Decimal:
    if value is None or value == "" or isinstance(value, bool):
        raise PositionValidationError(f"{field_name} is required")
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        raise PositionValidationError(f"{field_name} must be a number, got {value!r}")
    if not number.is_finite() or number <= 0:
        raise PositionValidationError(f"{field_name} must be greater than 0")
    if number < MAX_AMOUNT:
        # Stored with 8 decimal places; the rounded value is what gets checked
        number = number.quantize(MIN_AMOUNT)
    if number < MIN_AMOUNT or number >= MAX_AMOUNT:
        raise PositionValidationError(
            f"{field_name} must be at least {MIN_AMOUNT} and below {MAX_AMOUNT}, got {value!r}"
        )
    return number


class PositionStore:
    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self.conn = conn

    def list(self) -> List[Position]:
        """All positions, most recently touched first."""
        with cursor(self.conn) as cur:
            rows = cur.execute(f"""
                SELECT {_COLUMNS}
                FROM positions
                ORDER BY updated_at DESC
            """).fetchall()
        return [_to_position(row) for row in rows]

    def list_codes(self) -> List[str]:
        with cursor(self.conn) as cur:
            rows = cur.execute("SELECT DISTINCT code FROM positions ORDER BY code").fetchall()
        return [row[0] for row in rows]

    def get(self, code: str) -> Position | None:
        with cursor(self.conn) as cur:
            row = cur.execute(f"SELECT {_COLUMNS} FROM positions WHERE code = ?", [code]).fetchone()
        return _to_position(row) if row else None

    def save(self, code: str, name: str, cost_price, shares, now: datetime | None = None) -> Position:
        """
        Create or update the position for a code.

        Re-saving an existing code overwrites name, cost price and shares but
        keeps the original id and created_at.
        """
        code = (code or "").strip()
        name = (name or "").strip()
        if not code:
            raise PositionValidationError("code is required")
        if not name:
            raise PositionValidationError("name is required")
        cost = _positive_decimal(cost_price, "cost_price")
        qty = _positive_decimal(shares, "shares")

        if now is None:
            now = datetime.now()

        with cursor(self.conn) as cur:
            cur.execute("""
                INSERT INTO positions (code, id, name, cost_price, shares, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (code) DO UPDATE SET
                    name = EXCLUDED.name,
                    cost_price = EXCLUDED.cost_price,
                    shares = EXCLUDED.shares,
                    updated_at = EXCLUDED.updated_at
            """, [code, uuid.uuid4().hex[:16], name, cost, qty, now, now])
            row = cur.execute(f"SELECT {_COLUMNS} FROM positions WHERE code = ?", [code]).fetchone()
        return _to_position(row)

    def delete(self, code: str) -> bool:
        with cursor(self.conn) as cur:
            existed = cur.execute("SELECT 1 FROM positions WHERE code = ?", [code]).fetchone()
            cur.execute("DELETE FROM positions WHERE code = ?", [code])
        return existed is not None

    def touch(self, code: str, now: datetime | None = None) -> None:
        """Mark a position as the most recently viewed."""
        with cursor(self.conn) as cur:
            cur.execute(
                "UPDATE positions SET updated_at = ? WHERE code = ?",
                [now or datetime.now(), code],
            )

    def rename(self, code: str, name: str) -> None:
        with cursor(self.conn) as cur:
            cur.execute("UPDATE positions SET name = ? WHERE code = ?", [name, code])
