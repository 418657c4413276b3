#!/usr/bin/env python3
"""
PharmaChain CLI

Usage:
    pharmachain <command> [subcommand] [options]

Commands:
    config      Configuration management
    demo        Run the end-to-end custody scenario on a fresh network
    audit       Verify exported audit trails
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pharmachain import __version__


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
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return _format_table(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class PharmaChainCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="pharmachain",
            description="PharmaChain custody ledger",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"pharmachain {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Load configuration from a YAML file",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress error messages",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_config_commands()
        self._register_demo_command()
        self._register_audit_commands()

    def _register_config_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., policy.lock_after_delivery)")

        config_sub.add_parser("show", help="Show all configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")

    def _register_demo_command(self) -> None:
        demo = self.subparsers.add_parser("demo", help="Run the end-to-end custody scenario")
        demo.add_argument("--export", "-o", help="Write the audit trail to this JSON file")

    def _register_audit_commands(self) -> None:
        audit = self.subparsers.add_parser("audit", help="Audit trail tools")
        audit_sub = audit.add_subparsers(dest="subcommand")

        verify = audit_sub.add_parser("verify", help="Verify an exported audit trail")
        verify.add_argument("path", help="Path to an exported audit JSON file")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._setup(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            if isinstance(result, dict) and result.get("valid") is False:
                return 1
            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return 1

    def _setup(self, args: argparse.Namespace) -> None:
        from pharmachain.config import get_config_manager
        from pharmachain.observability import configure_logging

        mgr = get_config_manager()
        if args.config:
            mgr.load_from_file(args.config)
        obs = mgr.config.observability
        configure_logging(obs.log_level.get(), obs.log_format.get())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip(), exit_code=2)

        return handler(args)

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from pharmachain.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from pharmachain.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from pharmachain.config import get_config_manager
        errors = get_config_manager().validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from pharmachain.config import get_config_manager
        return get_config_manager().export_schema()

    # Demo
    def _handle_demo(self, args: argparse.Namespace) -> Any:
        from pharmachain.events import audit_document

        summary, network = run_demo()
        document = audit_document(network.ledger.log)
        if args.export:
            path = Path(args.export)
            path.write_text(json.dumps(document, indent=2) + "\n", encoding="utf-8")
            summary["exported_to"] = str(path)
        ok, _ = network.ledger.log.verify_chain()
        summary["audit"] = {
            "record_count": document["record_count"],
            "head_digest": document["head_digest"],
            "chain_valid": ok,
        }
        return summary

    # Audit handlers
    def _handle_audit_verify(self, args: argparse.Namespace) -> Any:
        from pharmachain.events import verify_audit_document

        path = Path(args.path)
        if not path.exists():
            raise CLIError(f"File not found: {path}")
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CLIError(f"Not valid JSON: {path}: {e}") from e
        report = verify_audit_document(document)
        report["path"] = str(path)
        return report


def run_demo() -> Any:
    """
    Run the Aspirin / BATCH-001 scenario on a fresh network.

    Returns the summary dict and the network it ran on.
    """
    import time

    from pharmachain.errors import Unauthorized
    from pharmachain.identity import generate_identity
    from pharmachain.network import deploy_network
    from pharmachain.registry import ProductStatus

    _, admin = generate_identity()
    _, manufacturer = generate_identity()
    _, distributor = generate_identity()
    _, regulator = generate_identity()
    _, intruder = generate_identity()

    network = deploy_network(admin)
    network.roles.grant_manufacturer(admin, manufacturer)
    network.roles.grant_distributor(admin, distributor)
    network.roles.grant_regulator(admin, regulator)

    steps: List[Dict[str, Any]] = []
    expiry = int(time.time()) + 365 * 24 * 3600
    product_id = network.supply_chain.register_product(
        manufacturer, "Aspirin", "BATCH-001", expiry, "ipfs://aspirin-batch-001-certificate"
    )
    steps.append({"step": "register_product", "actor": "manufacturer", "result": product_id})

    network.supply_chain.scan_product(manufacturer, product_id, ProductStatus.SHIPPED)
    steps.append({"step": "scan_product", "actor": "manufacturer", "result": "SHIPPED"})

    network.supply_chain.transfer_ownership(manufacturer, product_id, distributor)
    steps.append({"step": "transfer_ownership", "actor": "manufacturer", "result": "distributor"})

    try:
        network.supply_chain.scan_product(intruder, product_id, ProductStatus.DELIVERED)
        steps.append({"step": "scan_product", "actor": "intruder", "result": "accepted"})
    except Unauthorized as e:
        steps.append({"step": "scan_product", "actor": "intruder", "result": f"rejected: {e.reason}"})

    network.supply_chain.scan_product(distributor, product_id, ProductStatus.RECEIVED)
    steps.append({"step": "scan_product", "actor": "distributor", "result": "RECEIVED"})

    network.verification.verify_product(regulator, product_id)
    steps.append({"step": "verify_product", "actor": "regulator", "result": True})

    summary = {
        "actors": {
            "admin": admin,
            "manufacturer": manufacturer,
            "distributor": distributor,
            "regulator": regulator,
            "intruder": intruder,
        },
        "steps": steps,
        "product": network.registry.get(product_id).to_dict(),
    }
    return summary, network


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    cli = PharmaChainCLI()
    return cli.run(argv)


if __name__ == "__main__":
    sys.exit(main())
