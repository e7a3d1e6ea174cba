"""
Whale Stats

Realized PnL, win rate and ROI derived from an account's fill history.
Fills are replayed per asset with an average-entry cost basis.
"""

from dataclasses import dataclass
from typing import Dict, Iterable

# Residual size below this counts as flat
FLAT_EPSILON = 0.0001


@dataclass
class FillStats:
    realized_pnl: float
    trades: int
    closing_trades: int
    winning_trades: int

    @property
    def win_rate(self) -> float:
        """Share of closing fills that realized a profit, in percent."""
        if not self.closing_trades:
            return 0.0
        return self.winning_trades / self.closing_trades * 100

    def roi(self, account_value: float) -> float:
        if account_value <= 0:
            return 0.0
        return self.realized_pnl / account_value * 100


@dataclass
class _Book:
    size: float = 0.0  # signed
    avg_entry: float = 0.0
    total_cost: float = 0.0


def compute_fill_stats(fills: Iterable[dict]) -> FillStats:
    """
    Replay fills (oldest first) and accumulate realized PnL net of fees.

    A fill against the current direction realizes
    closing_size * (price - avg_entry) * sign(position). A fill with the
    direction adds to the cost basis.
    """
    books: Dict[str, _Book] = {}
    total_pnl = 0.0
    trades = closing = wins = 0

    for fill in fills:
        try:
            direction = 1 if fill["side"] == "B" else -1
            size = float(fill["sz"]) * direction
            price = float(fill["px"])
            fee = float(fill.get("fee") or 0)
        except (KeyError, ValueError, TypeError):
            continue

        trades += 1
        book = books.setdefault(fill.get("coin", ""), _Book())

        if (book.size > 0 and size < 0) or (book.size < 0 and size > 0):
            closing_size = min(abs(size), abs(book.size))
            sign = 1 if book.size > 0 else -1
            pnl = closing_size * (price - book.avg_entry) * sign
            total_pnl += pnl - fee
            closing += 1
            if pnl - fee > 0:
                wins += 1

            book.size += size
            if abs(book.size) < FLAT_EPSILON:
                book.size = 0.0
                book.avg_entry = 0.0
                book.total_cost = 0.0
        else:
            book.total_cost += abs(size) * price
            book.size += size
            book.avg_entry = book.total_cost / abs(book.size) if abs(book.size) > 0 else 0.0
            total_pnl -= fee

    return FillStats(
        realized_pnl=total_pnl,
        trades=trades,
        closing_trades=closing,
        winning_trades=wins,
    )
