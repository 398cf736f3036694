import json
import os
import time
from datetime import datetime
from pathlib import Path

from rich import box
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

SNAPSHOT_PATH = Path(os.getenv("SNAPSHOT_PATH", "data/sniper_snapshot.json"))

LEVEL_STYLES = {
    "detection": "cyan",
    "snipe": "magenta",
    "success": "green",
    "sell": "yellow",
    "warning": "yellow",
    "error": "bold red",
}


def _pnl(pct):
    if pct > 0:
        return f"[green]+{pct:.1f}%[/green]"
    if pct < -10:
        return f"[bold red]{pct:.1f}%[/bold red]"
    return f"[red]{pct:.1f}%[/red]"


def get_positions_table(data):
    table = Table(box=box.ROUNDED, expand=True)
    table.add_column("Token", style="cyan", no_wrap=True)
    table.add_column("Pool", style="magenta")
    table.add_column("Size (SOL)", justify="right")
    table.add_column("Entry", justify="right")
    table.add_column("Current", justify="right")
    table.add_column("PnL %", justify="right")
    table.add_column("TP / SL", justify="right")
    table.add_column("Age", justify="right")

    positions = data.get("open_positions", [])
    now = data.get("ts", time.time())

    if not positions:
        table.add_row("-", "-", "-", "-", "-", "-", "-", "-")
        return table

    for p in positions:
        name = p.get("symbol") or (p.get("asset_id") or "???")[:8]
        tp = p.get("take_profit_price")
        sl = p.get("stop_loss_price")
        age_sec = int(now - p.get("entry_timestamp", now))
        table.add_row(
            name,
            p.get("pool_type", "?"),
            f"{p.get('entry_amount_sol') or 0.0:.3f}",
            f"{p.get('entry_price') or 0.0:.10f}",
            f"{p.get('current_price') or 0.0:.10f}",
            _pnl(p.get("unrealized_pnl_pct") or 0.0),
            f"{tp or 0.0:.3g} / {sl or 0.0:.3g}",
            f"{age_sec}s",
        )
    return table


def get_monitors_table(data):
    table = Table(box=box.SIMPLE, expand=True)
    table.add_column("Token", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Left", justify="right")
    table.add_column("Sniper", overflow="fold")

    for m in data.get("monitors", [])[-10:]:
        status = m.get("status", "?")
        style = {"monitoring": "yellow", "triggered": "bold red", "error": "red"}.get(status, "dim")
        trigger = m.get("trigger") or {}
        sniper = ""
        if trigger:
            sniper = f"{(trigger.get('trader') or '')[:8]}... {trigger.get('sol_amount', 0):.2f} SOL"
        table.add_row(
            (m.get("asset_id") or "?")[:8],
            f"[{style}]{status}[/{style}]",
            f"{m.get('remaining_ms', 0) / 1000:.1f}s",
            sniper,
        )
    return table


def get_stats_panel(data):
    stats = data.get("stats", {})
    safety = data.get("safety", {})
    lines = [
        f"Detected: {stats.get('tokens_detected', 0)}  Filtered: {stats.get('tokens_filtered', 0)}  "
        f"Blocked: {stats.get('rejected_by_safety', 0)}",
        f"Snipes: {stats.get('successful_snipes', 0)} ok / {stats.get('failed_snipes', 0)} failed  "
        f"Sniper triggers: {stats.get('sniper_triggers', 0)}",
        f"Realized: {stats.get('realized_pnl_sol', 0.0):+.4f} SOL  "
        f"Unrealized: {stats.get('unrealized_pnl_sol', 0.0):+.4f} SOL",
        f"Budget: {safety.get('spent_today_sol', 0.0):.3f} / {safety.get('daily_budget_sol', 0.0):.3f} SOL  "
        f"Open: {safety.get('open_snipes', 0)} / {safety.get('max_concurrent_snipes', 0)}",
    ]
    if safety.get("trading_halted"):
        lines.append(f"[bold red]🚨 HALTED: {safety.get('halt_reason')}[/bold red]")
    return Panel("\n".join(lines), title="Session", border_style="blue")


def get_terminal_panel(data):
    rows = []
    for entry in data.get("terminal", [])[-12:]:
        ts = datetime.fromtimestamp(entry.get("timestamp", 0)).strftime("%H:%M:%S")
        level = entry.get("level", "info")
        style = LEVEL_STYLES.get(level, "white")
        rows.append(f"[dim]{ts}[/dim] [{style}]{entry.get('message', '')}[/{style}]")
    return Panel("\n".join(rows) or "No activity yet", title="Terminal", border_style="white")


def make_layout():
    layout = Layout()
    layout.split(
        Layout(name="header", size=3),
        Layout(name="main"),
        Layout(name="bottom", size=16),
        Layout(name="footer", size=3)
    )
    layout["bottom"].split_row(Layout(name="stats"), Layout(name="monitors"), Layout(name="terminal", ratio=2))
    return layout


def render(layout, data):
    ts = data.get("ts", 0)
    lag = time.time() - ts
    status = f"Last Update: {datetime.fromtimestamp(ts).strftime('%H:%M:%S')} (Lag: {lag:.1f}s)"
    if lag > 10:
        status += " [bold red]⚠️  STALE[/bold red]"

    layout["header"].update(Panel(f"🎯 SNIPER BOT | {status}", style="bold white on blue"))
    layout["main"].update(Panel(get_positions_table(data), title="Open Snipes", border_style="green"))
    layout["stats"].update(get_stats_panel(data))
    layout["monitors"].update(Panel(get_monitors_table(data), title="Sniper Monitors", border_style="yellow"))
    layout["terminal"].update(get_terminal_panel(data))


def main():
    layout = make_layout()

    layout["header"].update(Panel("🎯 SNIPER BOT - LIVE MONITOR 🎯", style="bold white on blue"))
    layout["footer"].update(Panel("Press Ctrl+C to exit", style="dim"))

    with Live(layout, refresh_per_second=1, screen=True):
        while True:
            try:
                if SNAPSHOT_PATH.exists():
                    try:
                        text = SNAPSHOT_PATH.read_text(encoding='utf-8')
                        if text.strip():
                            render(layout, json.loads(text))
                    except json.JSONDecodeError:
                        pass  # mid-write
                    except OSError:
                        pass  # replaced between exists() and read
                else:
                    layout["main"].update(Panel("Waiting for bot data...", title="Status", border_style="yellow"))

                time.sleep(1)
            except KeyboardInterrupt:
                break


if __name__ == "__main__":
    main()
