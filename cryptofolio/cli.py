"""
cryptofolio/cli.py
==================
The interactive command-line interface.

Prices are fetched with asyncio.run() for one-shot views; the live view runs
a PortfolioTracker inside a rich Live display until Ctrl-C.
"""

import asyncio
from typing import List, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt

from cryptofolio import config, display
from cryptofolio.db import Database
from cryptofolio.errors import PriceFeedError
from cryptofolio.feed import PriceFeedService
from cryptofolio.models import Quote, Transaction
from cryptofolio.monitor import PortfolioMonitor
from cryptofolio.prices import QuoteAdapter, build_source
from cryptofolio.tracker import PortfolioTracker
from cryptofolio.validation import held_amount, validate_symbol, validate_transaction
from cryptofolio.valuation import AVERAGE_COST, STRATEGIES, compute_metrics, fifo_realized

console = Console()


class CLI:
    """Main command-line interface class."""

    TYPES = {"1": "buy", "2": "sell", "3": "deposit", "4": "withdrawal"}
    INTERVALS = {
        "1": config.FAST_UPDATE_INTERVAL,
        "2": config.PRICE_UPDATE_INTERVAL,
        "3": config.SLOW_UPDATE_INTERVAL,
    }

    def __init__(self, db: Optional[Database] = None, user_id: Optional[str] = None,
                 source=None):
        self.db       = db or Database()
        self.user_id  = user_id or config.USER_ID
        self.feed     = PriceFeedService(QuoteAdapter(source or build_source(), self.db), self.db)
        self.strategy = AVERAGE_COST

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _transactions(self) -> List[Transaction]:
        return self.db.get_history(self.user_id)

    def _get_quotes(self, symbols) -> List[Quote]:
        """Fetch quotes; on failure fall back to whatever the cache had."""
        if not symbols:
            return []
        console.print("[dim]Fetching live prices...[/dim]")
        try:
            return asyncio.run(self.feed.fetch_prices(symbols))
        except PriceFeedError as e:
            console.print(display.render_price_error(str(e), e.attempts))
            return e.quotes

    def _prompt_float(self, prompt: str, allow_zero: bool = False,
                      default: Optional[str] = None) -> float:
        """Keep asking until the user enters a valid number."""
        while True:
            raw = Prompt.ask(prompt, default=default)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                console.print("[red]That doesn't look like a number. Try again.[/red]")
                continue
            if value < 0 or (value == 0 and not allow_zero):
                console.print("[red]Please enter a positive number.[/red]")
                continue
            return value

    def _prompt_symbol(self) -> str:
        while True:
            symbol = Prompt.ask("Symbol (e.g. BTC, ETH, SOL)").strip().upper()
            errors = validate_symbol(symbol)
            if not errors:
                return symbol
            for err in errors:
                console.print(f"[red]{err}[/red]")

    # -----------------------------------------------------------------------
    # Menu actions
    # -----------------------------------------------------------------------

    def view_portfolio(self):
        txns = self._transactions()
        quotes = self._get_quotes({t.symbol for t in txns})
        display.print_portfolio(compute_metrics(txns, quotes, self.strategy))

    def add_transaction(self):
        """Guided flow to record a buy, sell, deposit or withdrawal."""
        console.print("\n[steel_blue1]── Add Transaction ──[/steel_blue1]")
        console.print("  1 = Buy   2 = Sell   3 = Deposit   4 = Withdrawal")
        txn_type = self.TYPES[Prompt.ask("Type", choices=list(self.TYPES))]

        symbol     = self._prompt_symbol()
        amount     = self._prompt_float("Amount")
        unit_price = self._prompt_float("Price per unit ($)")
        fees       = self._prompt_float("Fees ($)", allow_zero=True, default="0")

        held   = held_amount(self._transactions(), symbol)
        errors = validate_transaction(txn_type, amount, unit_price, fees, held)
        if errors:
            for err in errors:
                console.print(f"[red]✗ {err}[/red]")
            return

        txn = Transaction.record(symbol, txn_type, amount, unit_price, fees)
        self.db.add_transaction(self.user_id, txn)
        console.print(f"[green]✓ {txn_type.upper()} recorded for {symbol} "
                      f"(value ${txn.value:,.2f})[/green]")

    def fifo_report(self):
        txns = self._transactions()
        symbols = sorted({t.symbol for t in txns if t.is_inflow})
        if not symbols:
            console.print("[yellow]No purchases recorded yet.[/yellow]")
            return

        console.print("\nSymbols: " + ", ".join(f"[cyan]{s}[/cyan]" for s in symbols))
        symbol = Prompt.ask("Symbol", choices=symbols)
        amount = self._prompt_float("Amount to sell")
        price  = self._prompt_float("Sell price ($)")
        display.print_fifo_report(symbol, amount, price,
                                  fifo_realized(symbol, amount, price, txns))

    def choose_strategy(self):
        name = Prompt.ask("Cost basis", choices=list(STRATEGIES), default=self.strategy.name)
        self.strategy = STRATEGIES[name]
        console.print(f"[green]✓ Using {name} cost basis.[/green]")

    async def _watch(self, interval: float):
        tracker = PortfolioTracker(self.feed, self.db, self.user_id,
                                   interval=interval, strategy=self.strategy)
        tracker.load_transactions()
        with Live(display.render_tracker(tracker), console=console,
                  refresh_per_second=4) as live:
            tracker.add_listener(lambda t: live.update(display.render_tracker(t)))
            tracker.start()
            try:
                while True:
                    await asyncio.sleep(3600)
            finally:
                tracker.stop()

    def watch(self):
        if not self._transactions():
            console.print("[yellow]No transactions yet. Add one first.[/yellow]")
            return
        console.print("  Refresh every:  1 = 1 min   2 = 5 min   3 = 10 min")
        interval = self.INTERVALS[Prompt.ask("Choose", choices=list(self.INTERVALS), default="2")]
        console.print("[dim]Watching prices. Press Ctrl-C to stop.[/dim]")
        try:
            asyncio.run(self._watch(interval))
        except KeyboardInterrupt:
            console.print("[cyan]Stopped watching.[/cyan]")

    def run_monitor(self):
        report = PortfolioMonitor(self.db).run()
        console.print(f"[green]✓ Checked {report.users_checked} users, "
                      f"{report.increases_detected} increases detected.[/green]")
        for d in report.details:
            state = "logged" if d.logged else "already logged today"
            console.print(f"  {d.user_id}: {d.increase_percentage:+.2f}% ({state})")

    # -----------------------------------------------------------------------
    # Main loop
    # -----------------------------------------------------------------------

    MENU = """
[grey39]┌─────────────────────────────────┐[/grey39]
[grey39]│[/grey39]  [steel_blue1]Crypto Portfolio[/steel_blue1]                [grey39]│[/grey39]
[grey39]├─────────────────────────────────┤[/grey39]
[grey39]│[/grey39]  [white]1[/white]  [grey62]View portfolio[/grey62]              [grey39]│[/grey39]
[grey39]│[/grey39]  [white]2[/white]  [grey62]Add transaction[/grey62]             [grey39]│[/grey39]
[grey39]│[/grey39]  [white]3[/white]  [grey62]Watch live prices[/grey62]           [grey39]│[/grey39]
[grey39]│[/grey39]  [white]4[/white]  [grey62]FIFO sell report[/grey62]            [grey39]│[/grey39]
[grey39]│[/grey39]  [white]5[/white]  [grey62]Cost basis method[/grey62]           [grey39]│[/grey39]
[grey39]│[/grey39]  [white]6[/white]  [grey62]Run daily monitor[/grey62]           [grey39]│[/grey39]
[grey39]│[/grey39]  [white]q[/white]  [grey62]Quit[/grey62]                        [grey39]│[/grey39]
[grey39]└─────────────────────────────────┘[/grey39]"""

    def run(self):
        console.print(Panel(
            f"[bold white]Crypto Portfolio[/bold white]  "
            f"[grey62]prices via {self.feed.adapter.source.name}[/grey62]",
            border_style="grey39",
            padding=(0, 2),
        ))

        while True:
            console.print(self.MENU)
            choice = Prompt.ask("Choice", default="1").strip().lower()

            if choice == "q":
                console.print("[cyan]Goodbye![/cyan]")
                self.db.close()
                break
            elif choice == "1":
                self.view_portfolio()
            elif choice == "2":
                self.add_transaction()
            elif choice == "3":
                self.watch()
            elif choice == "4":
                self.fifo_report()
            elif choice == "5":
                self.choose_strategy()
            elif choice == "6":
                self.run_monitor()
            else:
                console.print("[red]Invalid choice. Please try again.[/red]")
