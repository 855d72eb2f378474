"""Gradio UI for the Portfolio Tracker."""
from decimal import Decimal
from functools import partial

import gradio as gr
import pandas as pd

from portfolio_tracker.core.db import get_setting
from portfolio_tracker.core.errors import TrackerError
from portfolio_tracker.core.models import PortfolioSnapshot
from portfolio_tracker.core.refresh import TypeFilter
from portfolio_tracker.core.tracker import Tracker, default_chart_range


PLACEHOLDER = "--"

PORTFOLIO_COLUMNS = ["Code", "Name", "Type", "Shares", "Cost Price", "Current Price",
                     "Total Cost", "Market Value", "Profit", "Profit %"]
POSITION_COLUMNS = ["Code", "Name", "Type", "Cost Price", "Shares", "Last Viewed"]
SEARCH_COLUMNS = ["Code", "Name", "Type", "Category"]
RANGES = ["1D", "1W", "1M", "3M", "1Y", "ALL"]


def fmt(value: Decimal | None, pattern: str = "{:,.2f}") -> str:
    """Format a number, rendering an unknown value as a placeholder rather than 0."""
    if value is None:
        return PLACEHOLDER
    return pattern.format(value)


def fmt_signed(value: Decimal | None, suffix: str = "") -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:+,.2f}{suffix}"


def snapshot_markdown(snapshot: PortfolioSnapshot) -> str:
    summary = snapshot.summary
    computed = snapshot.computed_at.strftime("%Y-%m-%d %H:%M:%S") if snapshot.computed_at else "never"
    prices_note = "" if snapshot.has_prices or not snapshot.items else "\n*No cached prices yet, run a refresh.*"

    return f"""
## Portfolio Summary

**Total Cost:** {summary.total_cost:,.2f}
**Market Value:** {summary.total_market_value:,.2f}
**Profit/Loss:** {summary.total_profit:+,.2f} ({summary.total_profit_percent:+.2f}%)
**Positions:** {len(snapshot.items)}
**Computed:** {computed}
{prices_note}"""


def snapshot_dataframe(snapshot: PortfolioSnapshot) -> pd.DataFrame:
    if not snapshot.items:
        return pd.DataFrame(columns=PORTFOLIO_COLUMNS)

    data = []
    for item in snapshot.items:
        data.append({
            "Code": item.code,
            "Name": item.name,
            "Type": item.asset_type.value,
            "Shares": f"{item.shares:,.2f}",
            "Cost Price": fmt(item.cost_price, "{:,.4f}"),
            "Current Price": fmt(item.current_price, "{:,.4f}"),
            "Total Cost": fmt(item.total_cost),
            "Market Value": fmt(item.market_value),
            "Profit": fmt_signed(item.profit),
            "Profit %": fmt_signed(item.profit_percent, "%"),
        })

    return pd.DataFrame(data, columns=PORTFOLIO_COLUMNS)


def get_portfolio_data(tracker: Tracker):
    """Read the precomputed snapshot. Never calls a quote provider."""
    snapshot = tracker.read_snapshot()
    return snapshot_markdown(snapshot), snapshot_dataframe(snapshot)


def refresh_prices(tracker: Tracker, force: bool = False, asset_type: str = "all") -> str:
    try:
        result = tracker.trigger_refresh(force=force, type_filter=TypeFilter.parse(asset_type))
    except (TrackerError, ValueError) as e:
        return f"✗ Error: {e}"

    lines = [f"✓ {result.message}"]
    if result.failed_codes:
        lines.append(f"⚠ No price for: {', '.join(result.failed_codes)}")
    return "\n".join(lines)


def get_positions(tracker: Tracker) -> pd.DataFrame:
    positions = tracker.list_positions()
    if not positions:
        return pd.DataFrame(columns=POSITION_COLUMNS)

    data = []
    for pos in positions:
        data.append({
            "Code": pos.code,
            "Name": pos.name,
            "Type": pos.asset_type.value,
            "Cost Price": f"{pos.cost_price:,.4f}",
            "Shares": f"{pos.shares:,.2f}",
            "Last Viewed": str(pos.updated_at) if pos.updated_at else "",
        })

    return pd.DataFrame(data, columns=POSITION_COLUMNS)


def save_position(tracker: Tracker, code, name, cost_price, shares) -> str:
    try:
        position = tracker.save_position(code, name, cost_price, shares)
    except TrackerError as e:
        return f"✗ {e}"
    return f"✓ Saved {position.code} ({position.name}), fetching price in background"


def delete_position(tracker: Tracker, code) -> str:
    code = (code or "").strip()
    if not code:
        return "✗ code is required"
    if tracker.delete_position(code):
        return f"✓ Deleted {code}"
    return f"✗ Position not found: {code}"


def search_assets(tracker: Tracker, keyword) -> pd.DataFrame:
    results = tracker.search(keyword)
    if not results:
        return pd.DataFrame(columns=SEARCH_COLUMNS)

    data = [{
        "Code": r["code"],
        "Name": r["name"],
        "Type": r["asset_type"],
        "Category": r.get("type") or "",
    } for r in results]
    return pd.DataFrame(data, columns=SEARCH_COLUMNS)


def view_asset(tracker: Tracker, code, range_key):
    """Quote and chart for one security. Marks an existing position as recently viewed."""
    code = (code or "").strip()
    if not code:
        return "Enter a code to view", pd.DataFrame(columns=["time", "price"])

    if tracker.positions.get(code) is not None:
        tracker.touch_position(code)

    range_key = range_key or default_chart_range(code)
    quote = tracker.get_quote(code)

    if quote is None:
        cached = tracker.cached_price(code)
        quote_md = f"## {code}\n\n⚠ Live quote unavailable. Last cached price: {fmt(cached, '{:,.4f}')}"
    elif "net_worth" in quote:
        quote_md = f"""
## {quote['name']} ({quote['code']})

**Net Worth:** {fmt(quote['net_worth'], '{:,.4f}')}
**Accumulated:** {fmt(quote['total_worth'], '{:,.4f}')}
**Day Growth:** {fmt_signed(quote['day_growth'], '%')}
**As of:** {quote['last_update'] or PLACEHOLDER}
"""
    else:
        quote_md = f"""
## {quote['name']} ({quote['code']})

**Price:** {fmt(quote['current_price'])} ({fmt_signed(quote['change'])}, {fmt_signed(quote['change_percent'], '%')})
**Open / High / Low:** {fmt(quote['open'])} / {fmt(quote['high'])} / {fmt(quote['low'])}
**Prev Close:** {fmt(quote['close'])}
**Volume:** {quote['volume']:,}
**As of:** {quote['date']} {quote['time']}
"""

    chart = pd.DataFrame(tracker.chart(code, range_key), columns=["time", "price"])
    return quote_md, chart


def get_settings_info(tracker: Tracker) -> str:
    """Get current settings."""
    conn = tracker.conn

    return f"""
## Current Settings

**Market Timezone:** {get_setting(conn, "market_timezone")}
**Price Memory TTL:** {get_setting(conn, "price_ttl_seconds")}s
**Refresh Workers:** {get_setting(conn, "refresh_workers")}
**Auto Refresh Interval:** {get_setting(conn, "refresh_interval_seconds")}s

### Refresh Windows
- **Stocks:** Mon-Fri 09:30-11:30 and 13:00-15:00
- **Funds:** daily 20:00-23:59
"""


def create_ui(tracker: Tracker):
    """Create and configure the Gradio interface."""

    with gr.Blocks(title="Portfolio Tracker", theme=gr.themes.Soft()) as demo:
        gr.Markdown("# 📈 Portfolio Tracker")
        gr.Markdown("Stocks and funds, priced from cached quotes")

        # Refresh controls at the top
        with gr.Row():
            refresh_type = gr.Dropdown(label="Asset Type", choices=["all", "equity", "fund"], value="all", scale=1)
            refresh_btn = gr.Button("🔄 Refresh Due Prices", variant="primary", size="sm")
            force_btn = gr.Button("⚡ Force Refresh", variant="secondary", size="sm")
            refresh_output = gr.Textbox(label="Refresh Status", lines=2, interactive=False, scale=3)

        with gr.Tabs():
            # Portfolio Tab
            with gr.Tab("📊 Portfolio"):
                with gr.Row():
                    portfolio_reload_btn = gr.Button("🔄 Reload", size="sm")

                summary_md = gr.Markdown()
                portfolio_df = gr.DataFrame(label="Positions")

                portfolio_reload_btn.click(
                    fn=partial(get_portfolio_data, tracker),
                    outputs=[summary_md, portfolio_df]
                )

                # Load on startup
                demo.load(fn=partial(get_portfolio_data, tracker), outputs=[summary_md, portfolio_df])

            # Positions Tab
            with gr.Tab("💼 Positions"):
                with gr.Row():
                    positions_refresh_btn = gr.Button("🔄 Refresh", size="sm")

                positions_df = gr.DataFrame(label="Holdings (most recently viewed first)")

                gr.Markdown("### Add or Update Position")
                with gr.Row():
                    pos_code = gr.Textbox(label="Code (e.g., sh600519 or 110020)", scale=2)
                    pos_name = gr.Textbox(label="Name", scale=2)
                    pos_cost = gr.Number(label="Cost Price", scale=1)
                    pos_shares = gr.Number(label="Shares", scale=1)

                pos_save_btn = gr.Button("Save Position")
                pos_delete_btn = gr.Button("Delete Position", variant="stop")
                pos_output = gr.Textbox(label="Result", interactive=False)

                positions_refresh_btn.click(fn=partial(get_positions, tracker), outputs=positions_df)
                pos_save_btn.click(
                    fn=partial(save_position, tracker),
                    inputs=[pos_code, pos_name, pos_cost, pos_shares],
                    outputs=pos_output
                ).then(fn=partial(get_positions, tracker), outputs=positions_df)
                pos_delete_btn.click(
                    fn=partial(delete_position, tracker),
                    inputs=pos_code,
                    outputs=pos_output
                ).then(fn=partial(get_positions, tracker), outputs=positions_df)

                demo.load(fn=partial(get_positions, tracker), outputs=positions_df)

            # Market Tab
            with gr.Tab("🔍 Market"):
                with gr.Row():
                    search_box = gr.Textbox(label="Search stocks and funds", scale=3)
                    search_btn = gr.Button("Search", scale=1)

                search_df = gr.DataFrame(label="Results")

                with gr.Row():
                    view_code = gr.Textbox(label="Code", scale=2)
                    view_range = gr.Radio(label="Range", choices=RANGES, value="1D", scale=3)
                    view_btn = gr.Button("View", scale=1)

                quote_md = gr.Markdown()
                chart = gr.LinePlot(x="time", y="price", label="Price")

                search_btn.click(fn=partial(search_assets, tracker), inputs=search_box, outputs=search_df)
                search_box.submit(fn=partial(search_assets, tracker), inputs=search_box, outputs=search_df)
                view_code.change(fn=default_chart_range, inputs=view_code, outputs=view_range)
                view_btn.click(
                    fn=partial(view_asset, tracker),
                    inputs=[view_code, view_range],
                    outputs=[quote_md, chart]
                )

            # Settings Tab
            with gr.Tab("⚙️ Settings"):
                settings_md = gr.Markdown()
                demo.load(fn=partial(get_settings_info, tracker), outputs=settings_md)

        refresh_btn.click(
            fn=partial(refresh_prices, tracker, False),
            inputs=refresh_type,
            outputs=refresh_output
        ).then(fn=partial(get_portfolio_data, tracker), outputs=[summary_md, portfolio_df])
        force_btn.click(
            fn=partial(refresh_prices, tracker, True),
            inputs=refresh_type,
            outputs=refresh_output
        ).then(fn=partial(get_portfolio_data, tracker), outputs=[summary_md, portfolio_df])

    return demo


def launch(tracker: Tracker, share=False, server_port=7860):
    """Launch the Gradio UI."""
    demo = create_ui(tracker)
    demo.launch(share=share, server_port=server_port, server_name="0.0.0.0")
