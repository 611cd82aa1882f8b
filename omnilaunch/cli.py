#!/usr/bin/env python3
"""
OMNILAUNCH CLI

Command-line interface for inspecting configuration, pricing the bonding
curve and running a local multi-chain launch simulation.

Usage:
    omnilaunch <command> [subcommand] [options]

Commands:
    config      Configuration management
    curve       Bonding curve quotes
    simulate    Launch, trade and graduate a token across in-memory chains

Amounts on the command line are decimal token / ether quantities
("0.1", "2500"); output amounts are integers in the smallest unit.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional

import yaml

from omnilaunch import __version__
from omnilaunch.config import ConfigError, ETHER
from omnilaunch.errors import LaunchpadError


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_table(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:44] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


def parse_units(text: str) -> int:
    """Decimal quantity with 18 decimals to an integer amount."""
    try:
        value = Decimal(text) * ETHER
    except InvalidOperation:
        raise CLIError(f"Not a number: {text}")
    if value < 0 or value != value.to_integral_value():
        raise CLIError(f"Amount must be non-negative with at most 18 decimals: {text}")
    return int(value)


class LaunchCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="omnilaunch",
            description="OMNILAUNCH cross-chain token launchpad",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"omnilaunch {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--config", "-c", help="YAML configuration file to load first")
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_config_commands()
        self._register_curve_commands()
        self._register_simulate_command()

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        config_sub.add_parser("show", help="Show effective configuration")

        get = config_sub.add_parser("get", help="Get a value by dotted path")
        get.add_argument("path", help="Dotted path, e.g. curve.target")

        validate = config_sub.add_parser("validate", help="Validate configuration")
        validate.add_argument("file", nargs="?", help="YAML document to check against the schema")

        config_sub.add_parser("schema", help="Export configuration schema")

    def _register_curve_commands(self) -> None:
        curve = self.subparsers.add_parser("curve", help="Bonding curve quotes")
        curve_sub = curve.add_subparsers(dest="subcommand")

        price = curve_sub.add_parser("price", help="Price of one token at a sold level")
        price.add_argument("--sold", default="0", help="Tokens already sold")

        buy = curve_sub.add_parser("buy", help="Quote a buy")
        buy.add_argument("--sold", default="0", help="Tokens already sold")
        buy.add_argument("--raised", default="0", help="Native currency already raised")
        group = buy.add_mutually_exclusive_group(required=True)
        group.add_argument("--amount", help="Tokens to buy")
        group.add_argument("--value", help="Native currency to spend")

        sell = curve_sub.add_parser("sell", help="Quote a sell")
        sell.add_argument("--sold", required=True, help="Tokens already sold")
        sell.add_argument("--amount", required=True, help="Tokens to sell")

        table = curve_sub.add_parser("table", help="Price at each step")
        table.add_argument("--steps", type=int, default=10, help="Number of steps to list")

    def _register_simulate_command(self) -> None:
        sim = self.subparsers.add_parser("simulate", help="Run a local multi-chain launch")
        sim.add_argument("--chains", default="1,2", help="Comma separated chain ids; the first launches")
        sim.add_argument("--name", default="Test Token", help="Token name")
        sim.add_argument("--symbol", default="TEST", help="Token symbol")
        sim.add_argument("--uri", default="ipfs://test", help="Metadata URI")
        sim.add_argument("--buy", action="append", default=[], help="Tokens to buy (repeatable)")
        sim.add_argument("--order", choices=["fifo", "lifo", "shuffle"], default="fifo",
                         help="Delivery order of queued messages")
        sim.add_argument("--seed", type=int, help="Seed for shuffled delivery")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            from omnilaunch.config import get_config_manager
            if parsed.config:
                get_config_manager().load_from_file(parsed.config)
            else:
                get_config_manager().load_defaults()

            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, OutputFormat(parsed.format)))
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except (LaunchpadError, ConfigError) as e:
            if not parsed.quiet:
                code = getattr(e, "code", "config_error")
                print(f"Error [{code}]: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip())

        return handler(args)

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from omnilaunch.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from omnilaunch.config import get_config_manager
        return {"path": args.path, "value": get_config_manager().get(args.path)}

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from omnilaunch.config import get_config_manager, load_document, validate_document
        if args.file:
            errors = validate_document(load_document(args.file))
        else:
            errors = get_config_manager().validate()
        if errors:
            print(format_output({"valid": False, "errors": errors}), file=sys.stderr)
            raise CLIError("Configuration is invalid", exit_code=2)
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from omnilaunch.config import get_config_manager
        return get_config_manager().export_schema()

    # Curve handlers
    def _handle_curve_price(self, args: argparse.Namespace) -> Any:
        from omnilaunch.curve import BondingCurveMarket
        sold = parse_units(args.sold)
        return {"sold": sold, "price": BondingCurveMarket().price_at(sold)}

    def _handle_curve_buy(self, args: argparse.Namespace) -> Any:
        from omnilaunch.curve import BondingCurveMarket
        market = BondingCurveMarket()
        sold, raised = parse_units(args.sold), parse_units(args.raised)
        if args.amount:
            quote = market.quote_buy(sold, raised, parse_units(args.amount))
        else:
            quote = market.quote_buy_for_value(sold, raised, parse_units(args.value))
        return quote.to_dict()

    def _handle_curve_sell(self, args: argparse.Namespace) -> Any:
        from omnilaunch.curve import BondingCurveMarket
        return BondingCurveMarket().quote_sell(parse_units(args.sold), parse_units(args.amount)).to_dict()

    def _handle_curve_table(self, args: argparse.Namespace) -> Any:
        from omnilaunch.curve import BondingCurveMarket
        market = BondingCurveMarket()
        params = market.params
        rows = []
        raised = 0
        for step in range(args.steps):
            sold = step * params.increment
            if sold >= params.token_limit:
                break
            rows.append({
                "step": step,
                "sold": sold,
                "price": market.price_at(sold),
                "raised_at_start": raised,
                "graduates": market.target_reached(raised),
            })
            raised += market.cost_to_buy(sold, min(params.increment, params.token_limit - sold))
        return rows

    # Simulation
    def _handle_simulate(self, args: argparse.Namespace) -> Any:
        from omnilaunch.network import LaunchNetwork, account

        try:
            chain_ids = [int(c) for c in args.chains.split(",") if c.strip()]
        except ValueError:
            raise CLIError(f"Bad chain list: {args.chains}")
        if len(chain_ids) < 2 or len(set(chain_ids)) != len(chain_ids):
            raise CLIError("Need at least two distinct chain ids")

        network = LaunchNetwork(chain_ids, auto_deliver=False)
        origin = network[chain_ids[0]]
        user = account("cli-user")
        network.fund(user, 1_000 * ETHER)

        quote = origin.ledger.quote_create(args.name, args.symbol, args.uri)
        created = origin.ledger.create(user, args.name, args.symbol, args.uri, value=quote.required)

        trades: List[Dict[str, Any]] = []
        for amount_text in args.buy:
            amount = parse_units(amount_text)
            quoted = origin.ledger.quote_buy(created.sale_index, amount)
            receipt = origin.ledger.buy(
                user, created.sale_index, amount, quoted.native_amount + quoted.messaging_fee,
            )
            trades.append(receipt.to_dict())

        deliveries = network.deliver_all(order=args.order, seed=args.seed)

        return {
            "launch": {"chain_id": origin.chain_id, "sale_index": created.sale_index, "token": created.token},
            "trades": trades,
            "deliveries": [
                {"guid": d.guid, "status": d.status.value, "error": d.error.code if d.error else None}
                for d in deliveries
            ],
            "chains": {
                chain_id: {
                    "sales": [s.to_dict() for s in node.ledger.sales()],
                    "messenger": node.messenger.stats(),
                    "audit_head": node.audit.head,
                }
                for chain_id, node in network.nodes.items()
            },
        }


def main() -> int:
    """CLI entry point."""
    cli = LaunchCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
