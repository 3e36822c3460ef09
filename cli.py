#!/usr/bin/env python3
"""
================================================================================
CLI - Command Line Interface
================================================================================

Command-line access to the lot tracker:
    - Full reconciliation run writing balances, changes, history,
      diagnostics and the provenance graph
    - Transfer/trade matching report
    - Holdings history and wallet recap
    - DOT rendering of a saved audit trail
    - Configuration management

Features:
    - Rich text formatting with ANSI colors
    - Argument parsing for all major operations
    - Outputs written under a file lock
    - Error handling with user-friendly messages

Usage:
    python cli.py [command] [options]
    python cli.py --help

Last Modified: December 2025
================================================================================
"""

import sys
import argparse
import json
from pathlib import Path
from typing import Any, Optional

from lot_tracker import __version__
from lot_tracker.core.errors import LotTrackerError
from lot_tracker.core.history import history_to_frame
from lot_tracker.core.models import ConsumptionOrder
from lot_tracker.core.rate_overrides import RateOverrideProvider
from lot_tracker.core.reports import unmatched_legs_frame, wallet_recap, wallet_recap_frame
from lot_tracker.core.serialization import balances_to_dict, changes_to_json, load_changes_file, load_ledger_file
from lot_tracker.core.settings import EngineSettings
from lot_tracker.decimal_utils import DecimalEncoder
from lot_tracker.graph import GraphSimplifier, ProvenanceGraphBuilder, generate_dot
from lot_tracker.pipeline import build_graph, build_history, reconcile
from lot_tracker.utils import constants
from lot_tracker.utils.config import get_status, load_config, mark_run_complete, set_config_value
from lot_tracker.utils.files import write_json_locked, write_text_locked
from lot_tracker.utils.logger import logger, set_run_context


# ANSI color codes
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    UNDERLINE = '\033[4m'


def _pretty_json(payload: Any):
    """Render JSON to stdout with stable formatting."""
    print(json.dumps(payload, indent=2, sort_keys=True, cls=DecimalEncoder))


def _require_file(path: Optional[str], label: str) -> Optional[Path]:
    """Validate a file exists and return it; emit friendly error otherwise."""
    if not path:
        print_error(f"{label} path not given")
        return None
    resolved = Path(path)
    if not resolved.is_absolute():
        resolved = constants.BASE_DIR / resolved
    if resolved.exists():
        return resolved
    print_error(f"{label} not found at {resolved}")
    return None


def print_header(text):
    """Print formatted header"""
    print(f"\n{Colors.BOLD}{Colors.BLUE}{'=' * 70}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.CYAN}{text:^70}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.BLUE}{'=' * 70}{Colors.ENDC}\n")

def print_success(text):
    """Print success message"""
    print(f"{Colors.GREEN}✓{Colors.ENDC} {text}")

def print_error(text):
    """Print error message"""
    print(f"{Colors.RED}✗{Colors.ENDC} {text}")

def print_warning(text):
    """Print warning message"""
    print(f"{Colors.YELLOW}⚠{Colors.ENDC} {text}")

def print_info(text):
    """Print info message"""
    print(f"{Colors.CYAN}ℹ{Colors.ENDC} {text}")


# ==================================
# Shared loading
# ==================================

def _settings_from_args(args) -> EngineSettings:
    config = load_config()
    order = getattr(args, 'order', None)
    if order:
        config['accounting']['consumption_order'] = order
    return EngineSettings.from_config(config)


def _load_overrides(args) -> RateOverrideProvider:
    path = getattr(args, 'overrides', None)
    if path:
        resolved = _require_file(path, "Rate overrides file")
        if resolved is None:
            raise FileNotFoundError(path)
        return RateOverrideProvider.from_file(resolved)
    if constants.OVERRIDES_FILE.exists():
        return RateOverrideProvider.from_file(constants.OVERRIDES_FILE)
    return RateOverrideProvider()


def _reconcile_from_args(args):
    ledger_path = _require_file(args.ledger, "Ledger file")
    if ledger_path is None:
        return None, None
    settings = _settings_from_args(args)
    overrides = _load_overrides(args)
    entries, rejected = load_ledger_file(ledger_path, on_error=getattr(args, 'on_error', 'raise'))
    if rejected:
        print_warning(f"{len(rejected)} ledger record(s) rejected")
    return reconcile(entries, overrides, settings, rejected), ledger_path


def _output_dir(args) -> Path:
    out = Path(args.output_dir) if getattr(args, 'output_dir', None) else constants.OUTPUT_DIR
    out.mkdir(parents=True, exist_ok=True)
    return out


def _print_diagnostics_summary(diagnostics):
    grouping = diagnostics.grouping
    print(f"{Colors.BOLD}Transactions:{Colors.ENDC}")
    for kind, count in sorted(diagnostics.transaction_counts.items()):
        print(f"  {kind:<12} {count}")
    if grouping.unmatched_transfers:
        print_warning(f"Unmatched transfer legs: {len(grouping.unmatched_transfers)}")
    if grouping.unmatched_trades:
        print_warning(f"Unmatched trade legs:    {len(grouping.unmatched_trades)}")
    if grouping.missing_ignored_overrides:
        print_warning(f"Ignore overrides without entry: {len(grouping.missing_ignored_overrides)}")
    if diagnostics.ledger.dust_warnings:
        print_warning(f"Conversion dust warnings: {len(diagnostics.ledger.dust_warnings)}")


# ==================================
# Commands
# ==================================

def cmd_run(args):
    """Reconcile a ledger and write every output"""
    print_header("LOT RECONCILIATION")
    result, ledger_path = _reconcile_from_args(args)
    if result is None:
        mark_run_complete(False)
        return False

    out = _output_dir(args)
    settings = result.settings

    # Nothing is written until every output has been built
    history = build_history(result)
    frame = history_to_frame(history, fill_daily=settings.history_fill_daily)
    graph = build_graph(result, simplify=True if args.simplify else None)
    texts = {
        constants.CHANGES_FILE_NAME: changes_to_json(result.changes),
        constants.HISTORY_FILE_NAME: frame.to_csv(),
        constants.GRAPH_FILE_NAME: generate_dot(graph),
    }
    documents = {
        constants.BALANCES_FILE_NAME: balances_to_dict(result.balances),
        constants.DIAGNOSTICS_FILE_NAME: result.diagnostics.to_dict(),
    }

    for name, text in texts.items():
        write_text_locked(out / name, text)
    for name, document in documents.items():
        write_json_locked(out / name, document)
    print_success(f"Provenance graph written ({len(graph)} nodes)")

    _print_diagnostics_summary(result.diagnostics)
    mark_run_complete(True, str(ledger_path))
    print_success(f"Outputs written to {out}")
    return True


def cmd_group(args):
    """Show the legs the grouper could not pair"""
    print_header("TRANSFER AND TRADE MATCHING")
    result, _ = _reconcile_from_args(args)
    if result is None:
        return False

    grouping = result.diagnostics.grouping
    unmatched = grouping.unmatched_transfers + grouping.unmatched_trades
    frame = unmatched_legs_frame(result.entries, unmatched)
    _print_diagnostics_summary(result.diagnostics)

    if frame.empty:
        print_success("Every transfer and trade leg was paired")
        return True
    if args.output:
        write_text_locked(Path(args.output), frame.to_csv(index=False))
        print_success(f"Unmatched legs written to {args.output}")
    else:
        print(frame.to_string(index=False))
    return True


def cmd_history(args):
    """Print the daily holdings series of one asset"""
    print_header("HOLDINGS HISTORY")
    result, _ = _reconcile_from_args(args)
    if result is None:
        return False

    items = build_history(result)
    if not items:
        print_info(f"No {result.settings.history_asset.name} lots held")
        return True
    frame = history_to_frame(items, fill_daily=args.daily or result.settings.history_fill_daily)
    print(frame.to_string())
    return True


def cmd_recap(args):
    """Per-wallet lot count and totals"""
    print_header("WALLET RECAP")
    result, _ = _reconcile_from_args(args)
    if result is None:
        return False

    recaps = wallet_recap(result.balances, result.settings.history_asset)
    if not recaps:
        print_info("No lots held")
        return True
    print(wallet_recap_frame(recaps).to_string(index=False))
    return True


def cmd_graph(args):
    """Render a saved changes.json as DOT"""
    print_header("PROVENANCE GRAPH")
    changes_path = _require_file(args.changes, "Changes file")
    if changes_path is None:
        return False

    settings = _settings_from_args(args)
    graph = ProvenanceGraphBuilder(settings.base_asset).build(load_changes_file(changes_path))
    if args.simplify:
        outcomes = GraphSimplifier(settings.max_collapses).collapse_all(graph)
        applied = sum(1 for o in outcomes if o.applied)
        print_info(f"Collapsed {applied} round trip(s)")

    dot = generate_dot(graph)
    if args.output:
        write_text_locked(Path(args.output), dot)
        print_success(f"DOT written to {args.output}")
    else:
        print(dot)
    return True


def cmd_info(args):
    """Display system information"""
    print_header("SYSTEM INFORMATION")

    print(f"{Colors.BOLD}Paths:{Colors.ENDC}")
    print(f"  Base Directory:  {constants.BASE_DIR}")
    print(f"  Config:          {constants.CONFIG_FILE} {'✓' if constants.CONFIG_FILE.exists() else '✗'}")
    print(f"  Overrides:       {constants.OVERRIDES_FILE} {'✓' if constants.OVERRIDES_FILE.exists() else '✗'}")
    print(f"  Output Folder:   {constants.OUTPUT_DIR}")

    config = load_config()
    settings = EngineSettings.from_config(config)
    status = get_status()

    print(f"\n{Colors.BOLD}Configuration:{Colors.ENDC}")
    print(f"  Version:         {__version__}")
    print(f"  Base Asset:      {settings.base_asset}")
    print(f"  Consumption:     {settings.consumption_order.name}")
    print(f"  Transfer Window: {settings.transfer_window_seconds}s")
    print(f"  Trade Precision: {settings.min_trade_precision} digits")

    print(f"\n{Colors.BOLD}Status:{Colors.ENDC}")
    print(f"  Last Run:        {status.get('last_run') or 'Never'}")
    print(f"  Last Success:    {status.get('last_run_success')}")
    print(f"  Last Ledger:     {status.get('last_ledger') or '-'}")

    print_success("System information displayed")
    return True


def cmd_config_show(args):
    _pretty_json(load_config())
    return True


def cmd_config_set(args):
    try:
        set_config_value(args.key, args.value)
    except KeyError as e:
        print_error(str(e))
        return False
    print_success(f"{args.key} updated")
    return True


def build_parser():
    parser = argparse.ArgumentParser(
        description='Crypto Lot Tracker - cost-basis lots, audit trail and provenance graph',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s run --ledger inputs/ledger.json          # Reconcile and write outputs
  %(prog)s run --ledger inputs/ledger.csv          # CSV input
  %(prog)s run --ledger l.json --order FIFO --simplify
  %(prog)s group --ledger inputs/ledger.json        # Show unmatched legs
  %(prog)s history --ledger inputs/ledger.json --daily
  %(prog)s graph --changes outputs/changes.json     # Render saved audit trail
  %(prog)s config set accounting.consumption_order '"FIFO"'
  %(prog)s info                                     # Display system info
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    def ledger_args(p):
        p.add_argument('--ledger', required=True, help='Ledger file (.json or .csv)')
        p.add_argument('--overrides', help='Rate overrides JSON (default configs/rate_overrides.json)')
        p.add_argument('--order', choices=list(ConsumptionOrder.__members__), help='Lot consumption order')
        p.add_argument('--on-error', dest='on_error', choices=['raise', 'skip'], default='raise',
                       help='Reject invalid ledger records instead of aborting')

    # Run
    parser_run = subparsers.add_parser('run', help='Reconcile a ledger and write outputs')
    ledger_args(parser_run)
    parser_run.add_argument('--output-dir', dest='output_dir', help='Output folder (default outputs/)')
    parser_run.add_argument('--simplify', action='store_true', help='Collapse base-asset round trips in the graph')
    parser_run.set_defaults(func=cmd_run)

    # Group
    parser_group = subparsers.add_parser('group', help='Report unmatched transfer and trade legs')
    ledger_args(parser_group)
    parser_group.add_argument('--output', help='Write unmatched legs as CSV')
    parser_group.set_defaults(func=cmd_group)

    # History
    parser_history = subparsers.add_parser('history', help='Daily holdings series')
    ledger_args(parser_history)
    parser_history.add_argument('--daily', action='store_true', help='One row per calendar day')
    parser_history.set_defaults(func=cmd_history)

    # Recap
    parser_recap = subparsers.add_parser('recap', help='Per-wallet lot totals')
    ledger_args(parser_recap)
    parser_recap.set_defaults(func=cmd_recap)

    # Graph
    parser_graph = subparsers.add_parser('graph', help='Render a saved changes.json as DOT')
    parser_graph.add_argument('--changes', required=True, help='Path to changes.json')
    parser_graph.add_argument('--simplify', action='store_true', help='Collapse base-asset round trips')
    parser_graph.add_argument('--output', help='Destination .dot path (default stdout)')
    parser_graph.set_defaults(func=cmd_graph)

    # Info
    parser_info = subparsers.add_parser('info', help='Display system information')
    parser_info.set_defaults(func=cmd_info)

    # Config
    parser_config = subparsers.add_parser('config', help='View or change configuration')
    config_sub = parser_config.add_subparsers(dest='config_command')
    config_sub.required = True
    cfg_show = config_sub.add_parser('show', help='Show config.json')
    cfg_show.set_defaults(func=cmd_config_show)
    cfg_set = config_sub.add_parser('set', help="Set one 'section.key' value (JSON literal)")
    cfg_set.add_argument('key', help="Dotted key, e.g. accounting.consumption_order")
    cfg_set.add_argument('value', help='New value; parsed as JSON when possible')
    cfg_set.set_defaults(func=cmd_config_set)

    return parser


def main(argv=None):
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    # If no command specified, show help
    if not args.command:
        parser.print_help()
        return 0

    set_run_context('cli')

    # Run command
    try:
        success = args.func(args)
        return 0 if success else 1
    except KeyboardInterrupt:
        print_info("\nOperation cancelled by user")
        return 130
    except LotTrackerError as e:
        logger.error(f"{type(e).__name__}: {e}")
        print_error(f"{type(e).__name__}: {e}")
        if args.command == 'run':
            mark_run_complete(False)
        return 2
    except (OSError, ValueError) as e:
        logger.error(f"Command failed: {e}")
        print_error(str(e))
        if args.command == 'run':
            mark_run_complete(False)
        return 1

if __name__ == '__main__':
    sys.exit(main())
