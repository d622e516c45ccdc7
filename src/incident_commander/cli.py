"""
Command line interface for Incident Commander.
"""
import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

from . import __version__
from .audit import AuditChain, ChainVerification
from .config import CommanderConfig
from .exceptions import AuditChainLoadError, CommanderError
from .lifecycle import IncidentController
from .logging_config import configure_cli_logging
from .models import IncidentReport, IncidentState, utcnow
from .supervision import ScriptedVerifier, StaticVerifier, Verifier

logger = logging.getLogger(__name__)

DECISION_POLL_SECONDS = 0.01


def build_verifier(name: str) -> Verifier:
    """Map the ``--verifier`` choice to a strategy."""
    if name == "fail":
        return StaticVerifier(healthy=False)
    if name == "fail-once":
        return ScriptedVerifier([False], default=True)
    return StaticVerifier(healthy=True)


def build_alarm_payload(args: argparse.Namespace) -> Dict[str, Any]:
    """Synthetic CloudWatch-style alarm, or the JSON document given with --payload."""
    if args.payload:
        with open(args.payload, "r") as f:
            payload = json.load(f)
    else:
        payload = {
            "AlarmName": args.alarm_name,
            "NewStateValue": "ALARM",
            "NewStateReason": "Simulated alarm injected from the command line",
            "StateChangeTime": utcnow().isoformat(),
        }
        if args.target:
            payload["Trigger"] = {"Dimensions": [{"name": "FunctionName", "value": args.target}]}
    if args.provider and isinstance(payload, dict):
        message = payload.get("Message")
        inner = None
        if isinstance(message, str):
            try:
                inner = json.loads(message)
            except ValueError:
                inner = None
        if isinstance(inner, dict):
            inner["provider"] = args.provider
            payload["Message"] = json.dumps(inner)
        else:
            payload["provider"] = args.provider
    return payload


async def run_simulation(
    config: CommanderConfig,
    payload: Any,
    decision: str = "none",
    verifier: Optional[Verifier] = None,
) -> Tuple[IncidentReport, ChainVerification]:
    """
    Run one alarm through a fresh controller.

    In copilot mode ``decision`` ("approve"/"deny") is given as soon as the
    approval request appears; "none" lets the request time out.
    """
    controller = IncidentController.from_config(config, verifier=verifier)
    incident_id = controller.submit(payload)

    if decision in ("approve", "deny"):
        while not controller.snapshot(incident_id).incident.state.is_terminal:
            if controller.gate.is_pending(incident_id):
                if decision == "approve":
                    controller.approve(incident_id)
                else:
                    controller.deny(incident_id)
                break
            await asyncio.sleep(DECISION_POLL_SECONDS)

    try:
        report = await controller.wait(incident_id)
    finally:
        await controller.shutdown()
    return report, controller.verify_audit()


def load_config(args: argparse.Namespace) -> CommanderConfig:
    """Configuration from file/env, with command line overrides applied."""
    config = CommanderConfig.load(args.config_file)
    overrides: Dict[str, Any] = {}
    if getattr(args, "mode", None):
        overrides["approval_mode"] = args.mode
    if getattr(args, "approval_timeout", None) is not None:
        overrides["approval_timeout_seconds"] = args.approval_timeout
    if getattr(args, "settle_seconds", None) is not None:
        overrides["verification_settle_seconds"] = args.settle_seconds
    if getattr(args, "audit_log", None):
        overrides["audit_log_file"] = args.audit_log
    if overrides:
        config = dataclasses.replace(config, **overrides)
    config.validate()
    return config


def handle_simulate(args: argparse.Namespace) -> int:
    """
    Handle the simulate subcommand.

    Returns:
        0 when the incident resolved or was rejected, 2 when it failed, 1 on error
    """
    try:
        config = load_config(args)
        payload = build_alarm_payload(args)
        report, verification = asyncio.run(
            run_simulation(config, payload, args.decision, build_verifier(args.verifier))
        )
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except (OSError, ValueError, CommanderError) as e:
        logger.error(f"Simulation failed: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    output = {
        "report": report.model_dump(mode="json"),
        "states": [state.value for state in report.states],
        "audit": verification.to_dict(),
    }
    print(json.dumps(output, indent=2))
    return 2 if report.incident.state == IncidentState.FAILED else 0


def handle_verify_audit(args: argparse.Namespace) -> int:
    """Re-verify a JSONL audit file written by the file audit sink."""
    try:
        chain = AuditChain.load_jsonl(args.file)
    except AuditChainLoadError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    result = chain.verify()
    print(json.dumps(result.to_dict(), indent=2))
    if result.valid:
        print(f"✓ Audit chain intact ({result.length} entries)", file=sys.stderr)
        return 0
    print(f"✗ Audit chain broken at index {result.broken_at_index}", file=sys.stderr)
    return 1


def handle_version(args: argparse.Namespace) -> int:
    print(f"Incident Commander version {__version__}")
    if args.verbose:
        print(f"\nPython: {sys.version}")
    return 0


def handle_config(args: argparse.Namespace) -> int:
    """Show or validate the effective configuration."""
    config = CommanderConfig.load(args.config_file)
    if args.action == "validate":
        try:
            config.validate()
        except CommanderError as e:
            print(f"ERROR: {e}")
            return 1
        print("✓ Configuration is valid")
        return 0

    print(json.dumps(dataclasses.asdict(config), indent=2))
    return 0


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser with subcommands.
    """
    parser = argparse.ArgumentParser(
        prog="incident-commander",
        description="Incident Commander: audited, human-gated incident remediation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s simulate
  %(prog)s simulate --alarm-name HighLatencyAlarm --target checkout-fn
  %(prog)s simulate --mode copilot --decision deny
  %(prog)s simulate --verifier fail-once --audit-log audit.jsonl
  %(prog)s verify-audit audit.jsonl
  %(prog)s config show

Environment Variables:
  INCIDENT_COMMANDER_HITL_MODE          autonomous or copilot
  INCIDENT_COMMANDER_APPROVAL_TIMEOUT   approval wait in seconds (default: 300)
  INCIDENT_COMMANDER_PLANNER_URL        reasoning service endpoint
  INCIDENT_COMMANDER_AUDIT_LOG_FILE     JSONL audit mirror
        """
    )

    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only show warnings and errors")
    parser.add_argument("--config-file", metavar="PATH", help="Path to configuration file")
    parser.add_argument("--log-file", metavar="PATH", help="Also write logs to a rotating file")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")

    subparsers = parser.add_subparsers(title="subcommands", dest="command")

    simulate_parser = subparsers.add_parser(
        "simulate",
        help="Inject a synthetic alarm and print the incident report",
    )
    simulate_parser.add_argument("--alarm-name", default="HighErrorAlarm", help="Alarm name (default: HighErrorAlarm)")
    simulate_parser.add_argument("--payload", metavar="FILE", help="JSON alarm payload to use instead")
    simulate_parser.add_argument("--target", help="Resource named in the alarm's first dimension")
    simulate_parser.add_argument("--provider", help="Provider hint added to the payload (AWS, AZURE, GCP)")
    simulate_parser.add_argument("--mode", choices=["autonomous", "copilot"], help="Approval mode override")
    simulate_parser.add_argument(
        "--decision",
        choices=["approve", "deny", "none"],
        default="approve",
        help="Operator decision in copilot mode (default: approve)",
    )
    simulate_parser.add_argument(
        "--verifier",
        choices=["pass", "fail", "fail-once"],
        default="pass",
        help="Verification outcome (default: pass)",
    )
    simulate_parser.add_argument("--settle-seconds", type=float, help="Delay before verification")
    simulate_parser.add_argument("--approval-timeout", type=int, help="Approval wait in seconds")
    simulate_parser.add_argument("--audit-log", metavar="FILE", help="Mirror audit entries to this JSONL file")
    simulate_parser.set_defaults(func=handle_simulate)

    verify_parser = subparsers.add_parser("verify-audit", help="Verify a JSONL audit chain")
    verify_parser.add_argument("file", help="Audit JSONL file")
    verify_parser.set_defaults(func=handle_verify_audit)

    version_parser = subparsers.add_parser("version", help="Show version information")
    version_parser.set_defaults(func=handle_version)

    config_parser = subparsers.add_parser("config", help="Show or validate configuration")
    config_parser.add_argument(
        "action",
        nargs="?",
        choices=["show", "validate"],
        default="show",
        help="Config action (default: show)"
    )
    config_parser.set_defaults(func=handle_config)

    return parser


def run(argv: Optional[List[str]] = None) -> int:
    """Parse ``argv`` and run the selected subcommand."""
    parser = create_parser()
    args = parser.parse_args(argv)

    configure_cli_logging(
        verbose=args.verbose,
        quiet=args.quiet,
        log_file=args.log_file,
        use_json=args.json_logs,
    )

    if not hasattr(args, "func"):
        parser.print_help()
        return 1
    return args.func(args)


def main() -> None:
    """Main entry point for the CLI."""
    sys.exit(run())


if __name__ == "__main__":
    main()
