"""
cryptofolio/display.py
======================
Renders portfolio metrics, alerts and price errors in the terminal with rich.
Each print_* function has a render_* twin that returns the renderable, so the
live view can redraw without printing.
"""

from typing import List, Optional

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cryptofolio.config import crypto_name
from cryptofolio.models import FifoResult, PortfolioMetrics
from cryptofolio.tracker import DECLINE, Alert, PortfolioTracker

console = Console()

# ── Palette ─────────────────────────────────────────────────────────────────
GAIN   = "green"
LOSS   = "red"
MUTED  = "grey62"
ACCENT = "steel_blue1"
HEAD   = "bold white"
WARN   = "yellow"


# ── Formatters ───────────────────────────────────────────────────────────────

def _colour(value: float, text: str) -> str:
    if value > 0:  return f"[{GAIN}]{text}[/{GAIN}]"
    if value < 0:  return f"[{LOSS}]{text}[/{LOSS}]"
    return f"[{MUTED}]{text}[/{MUTED}]"

def _cur(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"

def _pct(value: float) -> str:
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"

def _qty(amount: float, symbol: str) -> str:
    decimals = 8 if amount < 1 else 4 if amount < 1000 else 2
    return f"{amount:,.{decimals}f} {symbol}"

def _arrow(value: float) -> str:
    if value > 0:  return f"[{GAIN}]▲[/{GAIN}]"
    if value < 0:  return f"[{LOSS}]▼[/{LOSS}]"
    return f"[{MUTED}]─[/{MUTED}]"


# ── Portfolio summary ────────────────────────────────────────────────────────

def render_portfolio(metrics: PortfolioMetrics):
    if metrics.is_empty:
        return Text.from_markup(
            f"\n  [{MUTED}]No holdings yet. Add your first transaction to start tracking.[/{MUTED}]\n")

    table = Table(
        box=box.SIMPLE,
        show_header=True,
        header_style=f"bold {ACCENT}",
        show_edge=False,
        pad_edge=True,
        row_styles=["", "on grey7"],
    )

    table.add_column("",           width=2)
    table.add_column("Symbol",     style=HEAD, min_width=6)
    table.add_column("Name",       style=MUTED, min_width=12)
    table.add_column("Amount",     justify="right", min_width=14)
    table.add_column("Avg Cost",   justify="right", min_width=11, style=MUTED)
    table.add_column("Price",      justify="right", min_width=11)
    table.add_column("24h",        justify="right", min_width=8)
    table.add_column("Value",      justify="right", min_width=13, style=HEAD)
    table.add_column("Unrealized", justify="right", min_width=13)
    table.add_column("%",          justify="right", min_width=9)
    table.add_column("Realized",   justify="right", min_width=11)

    for p in metrics.positions:
        if p.current_price == 0:
            na = f"[{MUTED}]—[/{MUTED}]"
            table.add_row(
                f"[{MUTED}]?[/{MUTED}]", p.symbol, crypto_name(p.symbol),
                _qty(p.total_amount, p.symbol), _cur(p.average_price),
                na, na, na, na, na, _colour(p.realized_pnl, _cur(p.realized_pnl)),
            )
            continue

        table.add_row(
            _arrow(p.unrealized_pnl),
            p.symbol,
            crypto_name(p.symbol),
            _qty(p.total_amount, p.symbol),
            _cur(p.average_price),
            _cur(p.current_price),
            _colour(p.change_24h_percent, _pct(p.change_24h_percent)),
            _cur(p.current_value),
            _colour(p.unrealized_pnl, _cur(p.unrealized_pnl)),
            _colour(p.unrealized_pnl_percent, _pct(p.unrealized_pnl_percent)),
            _colour(p.realized_pnl, _cur(p.realized_pnl)),
        )

    return Group(table, _render_totals(metrics), render_allocation(metrics))


def _render_totals(m: PortfolioMetrics) -> Text:
    parts = [
        f"[{MUTED}]Cost[/{MUTED}]  [white]{_cur(m.total_cost)}[/white]",
        f"[{MUTED}]Value[/{MUTED}]  [bold white]{_cur(m.total_value)}[/bold white]",
        f"[{MUTED}]P&L[/{MUTED}]  {_colour(m.total_pnl, _cur(m.total_pnl))}  "
        f"{_colour(m.total_pnl_percent, _pct(m.total_pnl_percent))}",
        f"[{MUTED}]Fees[/{MUTED}]  [white]{_cur(m.total_fees)}[/white]",
    ]
    return Text.from_markup("  " + "     ".join(parts) + "\n")


def render_allocation(metrics: PortfolioMetrics, bar_width: int = 28):
    if metrics.total_value == 0:
        return Text("")

    table = Table(
        box=box.SIMPLE,
        show_header=True,
        header_style=f"bold {ACCENT}",
        show_edge=False,
        pad_edge=True,
    )
    table.add_column("Asset", min_width=8)
    table.add_column("Value", justify="right", min_width=13)
    table.add_column("",      min_width=36)

    for p in metrics.positions:
        pct  = p.allocation_percent(metrics.total_value)
        fill = round(pct / 100 * bar_width)
        bar  = (
            f"[{ACCENT}]{'█' * fill}[/{ACCENT}]"
            f"[{MUTED}]{'░' * (bar_width - fill)}[/{MUTED}]"
            f"  [{MUTED}]{pct:.1f}%[/{MUTED}]"
        )
        table.add_row(p.symbol, _cur(p.current_value), bar)
    return table


def print_portfolio(metrics: PortfolioMetrics) -> None:
    console.print()
    console.print(render_portfolio(metrics))


# ── Alerts / banners ─────────────────────────────────────────────────────────

def render_alert(alert: Optional[Alert]):
    if alert is None:
        return None
    style = LOSS if alert.kind == DECLINE else GAIN
    return Panel(alert.message, border_style=style, padding=(0, 2))


def render_price_error(message: Optional[str], attempts: int = 0):
    if not message:
        return None
    body = f"[{WARN}]{message}[/{WARN}]"
    if attempts:
        body += f"  [{MUTED}]({attempts} attempts, showing last known prices)[/{MUTED}]"
    return Panel(body, title="Price update failed", border_style=WARN, padding=(0, 2))


def render_tracker(tracker: PortfolioTracker):
    parts: List = []
    banner = render_price_error(tracker.price_error, tracker.price_error_attempts)
    if banner is not None:
        parts.append(banner)
    alert = render_alert(tracker.alert)
    if alert is not None:
        parts.append(alert)
    parts.append(render_portfolio(tracker.metrics))

    sub = tracker.subscription
    status = f"[{MUTED}]cost basis: {tracker.strategy.name}"
    if tracker.quote_source:
        status += f"  ·  prices: {tracker.quote_source}"
    if sub is not None and sub.last_update is not None:
        status += f"  ·  updated {sub.last_update:%H:%M:%S} UTC  ·  {sub.state.value}"
    parts.append(Text.from_markup(status + f"[/{MUTED}]"))
    return Group(*parts)


# ── FIFO report ──────────────────────────────────────────────────────────────

def print_fifo_report(symbol: str, sell_amount: float, sell_price: float,
                      result: FifoResult) -> None:
    console.print()
    lines = [
        f"[{MUTED}]Sell[/{MUTED}]          [white]{_qty(sell_amount, symbol)} @ {_cur(sell_price)}[/white]",
        f"[{MUTED}]Realized P&L[/{MUTED}]  {_colour(result.realized_pnl, _cur(result.realized_pnl))}",
        f"[{MUTED}]Units left[/{MUTED}]    [white]{_qty(result.remaining_amount, symbol)}[/white]",
    ]
    title = f"[bold white]{symbol}[/bold white]  [{MUTED}]FIFO[/{MUTED}]"
    console.print(Panel("\n".join(lines), title=title, border_style=ACCENT, padding=(1, 2)))

    if not result.remaining_lots:
        return

    t_table = Table(
        box=box.SIMPLE,
        show_header=True,
        header_style=f"bold {ACCENT}",
        show_edge=False,
        pad_edge=True,
    )
    t_table.add_column("Bought",  style=MUTED)
    t_table.add_column("Amount",  justify="right")
    t_table.add_column("Price",   justify="right")
    t_table.add_column("Cost",    justify="right", style=HEAD)

    for lot in result.remaining_lots:
        t_table.add_row(f"{lot.timestamp:%Y-%m-%d %H:%M}",
                        _qty(lot.amount, symbol), _cur(lot.unit_price), _cur(lot.cost))

    console.print(t_table)
    console.print()
