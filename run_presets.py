#!/usr/bin/env python3
"""
🎯 Preset Cart Load Scenarios
=============================
Pre-configured scenarios, from a single-user contract check to 10K VU ramps.

Usage:
    python run_presets.py http://localhost:8080 smoke
    python run_presets.py http://localhost:8080 progressive --i-know-what-im-doing
    python run_presets.py http://localhost:8080 cart-logic --report report.json --no-live
    python run_presets.py --list
"""

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from cart_load_test import CartLoadTestEngine
from config import LoadTestConfig

console = Console()

ADD_INCREASE_DECREASE_REMOVE = ["add", "increase", "decrease", "remove"]

# =============================================================================
# PRESET CONFIGURATIONS
# =============================================================================

PRESETS: Dict[str, Dict[str, Any]] = {
    # -------------------------------------------------------------------------
    # CONTRACT PRESETS
    # -------------------------------------------------------------------------
    "smoke": {
        "name": "🌱 Smoke",
        "description": "1 VU for 10s walking add → increase → decrease → remove",
        "config": {
            "vus": 1,
            "duration_seconds": 10,
            "steps": ADD_INCREASE_DECREASE_REMOVE,
            "thresholds": {"max_failure_rate": 0.01},
        },
    },
    "cart-logic": {
        "name": "🧮 Cart Logic",
        "description": "One iteration over bearer auth; absent items must be rejected with 400",
        "config": {
            "vus": 1,
            "iterations": 1,
            "duration_seconds": 10,
            "auth_mode": "bearer",
            "pacing": 0,
            "steps": [
                {"op": "add", "item": 0},
                {"op": "increase", "item": 0},
                {"op": "increase", "item": 1},  # absent: created at quantity 1
                {"op": "decrease", "item": 0},
                {"op": "decrease", "item": 5, "expect": [400]},
                {"op": "remove", "item": 7, "expect": [400]},
            ],
            "thresholds": {"min_check_rate": 0.99},
        },
    },
    "edge-cases": {
        "name": "🧪 Edge Cases",
        "description": "10 VUs for 30s: multi-item cart, decrease-to-zero and remove refresh the cart",
        "config": {
            "vus": 10,
            "duration_seconds": 30,
            "subject_prefix": "edge_user",
            "pacing": 0,
            "steps": [
                {"op": "add", "item": 0},
                {"op": "add", "item": 1},
                {"op": "increase", "item": 0},
                {"op": "increase", "item": 1},
                {"op": "decrease", "item": 0},
                {"op": "decrease", "item": 0},
                {"op": "remove", "item": 1, "expect": [200]},
                {"op": "remove", "item": 0, "expect": [400]},
                "view",
            ],
            "thresholds": {"max_failure_rate": 0.01},
        },
    },
    "concurrent-ops": {
        "name": "🔀 Concurrent Cart Operations",
        "description": "25 VUs for 45s of rapid adds and quantity changes",
        "config": {
            "vus": 25,
            "duration_seconds": 45,
            "item_policy": "per_call",
            "pacing": 0,
            "steps": ["add", "add", "add", "modify", "modify", "modify", "modify", "modify", "view",
                      {"op": "remove", "chance": 0.3}],
            "thresholds": {"p95_ms": 150, "max_failure_rate": 0.01, "min_check_rate": 0.98},
        },
    },
    "mixed": {
        "name": "🛍️ Mixed Workload",
        "description": "Ramp to 50 VUs; each iteration browses, adds, modifies or views",
        "config": {
            "stages": [
                {"duration": 10, "target": 20, "name": "ramp_up"},
                {"duration": 30, "target": 50, "name": "peak"},
                {"duration": 10, "target": 0},
            ],
            "plan_mode": "choice",
            "steps": ["browse", "add", "modify", "view"],
            "thresholds": {"p95_ms": 200, "max_failure_rate": 0.02},
        },
    },

    # -------------------------------------------------------------------------
    # RAMPING PRESETS
    # -------------------------------------------------------------------------
    "jwt-stress": {
        "name": "🔐 JWT Stateless Stress",
        "description": "Locally minted tokens, ramp 2.5K → 10K VUs and hold",
        "config": {
            "stages": [
                {"duration": 10, "target": 2500, "name": "ramp_2500"},
                {"duration": 10, "target": 5000, "name": "ramp_5000"},
                {"duration": 10, "target": 7500, "name": "ramp_7500"},
                {"duration": 10, "target": 10000, "name": "ramp_10000"},
                {"duration": 20, "target": 10000, "name": "hold"},
                {"duration": 10, "target": 0},
            ],
            "steps": ADD_INCREASE_DECREASE_REMOVE,
            "thresholds": {"p95_ms": 1000, "max_failure_rate": 0.2},
        },
        "dangerous": True,
    },
    "progressive": {
        "name": "📈 Progressive Load",
        "description": "Server-issued cookies, 4K → 8K → 10K VUs with per-stage metrics",
        "config": {
            "credential_source": "bootstrap",
            "stages": [
                {"duration": 10, "target": 4000, "name": "ramp1"},
                {"duration": 10, "target": 8000, "name": "ramp2"},
                {"duration": 10, "target": 10000, "name": "ramp3"},
                {"duration": 20, "target": 10000, "name": "hold"},
                {"duration": 10, "target": 0},
            ],
            "steps": ["add", "remove"],
            "thresholds": {"p95_ms": 5000, "max_failure_rate": 0.2},
        },
        "dangerous": True,
    },
    "plateau": {
        "name": "🏔️ Plateau",
        "description": "Slow ramp to 1K, metrics recorded only on the two plateaus",
        "config": {
            "credential_source": "bootstrap",
            "browser_headers": True,
            "stages": [
                {"duration": 100, "target": 1000},
                {"duration": 30, "target": 1000},
                {"duration": 10, "target": 1000},
                {"duration": 30, "target": 1000},
                {"duration": 10, "target": 0},
            ],
            "phases": [
                {"name": "plateau2k", "start": 100, "end": 130},
                {"name": "plateau6k", "start": 130, "end": 170},
            ],
            "steps": ["add", "remove"],
            "thresholds": {"p95_ms": 100},
        },
        "dangerous": True,
    },
    "failure": {
        "name": "🔥 Failure Injection",
        "description": "500 VUs sending bad tokens, invalid item ids and 1ms timeouts alongside valid adds",
        "config": {
            "credential_source": "bootstrap",
            "plan_mode": "choice",
            "stages": [
                {"duration": 10, "target": 500},
                {"duration": 60, "target": 500, "name": "sustained_failures"},
                {"duration": 10, "target": 0},
            ],
            "steps": [
                # 30% bad credentials, 20% invalid items, 20% timeouts, 30% valid
                {"op": "add", "inject": "bad_token"},
                {"op": "add", "inject": "bad_token"},
                {"op": "add", "inject": "bad_token"},
                {"op": "add", "inject": "bad_item"},
                {"op": "remove", "inject": "bad_item"},
                {"op": "add", "inject": "timeout"},
                {"op": "add", "inject": "timeout"},
                "add",
                "add",
                "add",
            ],
            "thresholds": {"max_failure_rate": 0.95},
        },
        "dangerous": True,
    },
}


def build_config(preset_name: str, url: str, **overrides: Any) -> LoadTestConfig:
    preset = PRESETS[preset_name]
    return LoadTestConfig.from_dict({**preset["config"], **overrides, "base_url": url})


def peak_vus(preset_name: str) -> int:
    config = PRESETS[preset_name]["config"]
    if "stages" in config:
        return max(stage["target"] for stage in config["stages"])
    return config.get("vus", 1)


def print_presets():
    """List presets grouped by whether they ramp to thousands of VUs."""
    table = Table(title="Cart Load Presets")
    table.add_column("Preset", style="cyan")
    table.add_column("Peak VUs", justify="right")
    table.add_column("Description")

    for name, preset in PRESETS.items():
        vus = f"{peak_vus(name):,}"
        if preset.get("dangerous"):
            vus = f"[red]{vus}[/red]"
        table.add_row(name, vus, preset["description"])
    console.print(table)


async def run_preset(
    url: str,
    preset_name: str,
    dangerous_confirmed: bool = False,
    report_path: Optional[str] = None,
    live_display: bool = True,
) -> Optional[bool]:
    """Run a preset scenario. Returns whether thresholds held, or None when not run."""
    if preset_name not in PRESETS:
        console.print(f"[red]Unknown preset: {preset_name}[/red]")
        print_presets()
        return None

    preset = PRESETS[preset_name]

    if preset.get("dangerous") and not dangerous_confirmed:
        console.print(Panel(
            f"[bold red]{preset['name']} ramps to {peak_vus(preset_name):,} virtual users[/bold red]\n\n"
            f"{preset['description']}\n\n"
            f"Every VU keeps its own rotating credential and an open connection,\n"
            f"so both the target and this machine need headroom for it.\n\n"
            f"[yellow]Point it only at a cart server you are allowed to load.[/yellow]",
            title="⚠️ High Load Preset",
            border_style="red"
        ))
        if not Confirm.ask(f"Start {preset_name} against {url}?"):
            console.print("[dim]Not started.[/dim]")
            return None

    console.print(Panel(
        f"[bold]{preset['name']}[/bold]\n\n{preset['description']}",
        title=f"Preset: {preset_name}",
        border_style="blue"
    ))

    engine = CartLoadTestEngine(build_config(preset_name, url, live_display=live_display))
    await engine.run()
    engine.print_summary()
    if report_path:
        engine.generate_report(report_path)
    return engine.test_passed()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="🎯 Preset Cart Load Scenarios")
    parser.add_argument("url", nargs="?", help="Base URL of the cart server")
    parser.add_argument("preset", nargs="?", help="Preset name")
    parser.add_argument("--list", "-l", action="store_true", help="List presets and exit")
    parser.add_argument("--i-know-what-im-doing", dest="confirmed", action="store_true",
                        help="Skip the confirmation for high load presets")
    parser.add_argument("--report", "-o", type=str, help="Output file for JSON report")
    parser.add_argument("--no-live", action="store_true", help="Disable live metrics table")
    return parser


def main():
    args = build_parser().parse_args()

    if args.list or not args.url:
        print_presets()
        return
    if not args.preset:
        console.print("[red]Please provide both URL and preset name[/red]")
        print_presets()
        sys.exit(2)

    passed = asyncio.run(run_preset(
        args.url, args.preset, args.confirmed, args.report, live_display=not args.no_live
    ))
    if passed is None:
        sys.exit(2)
    sys.exit(0 if passed else 1)


if __name__ == "__main__":
    main()
