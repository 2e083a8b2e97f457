#!/usr/bin/env python3
"""TruthGit gateway CLI — terminal front end for the Command Safety Gateway.

Usage:
    python gateway_cli.py check "git status"
    python gateway_cli.py exec "ls -la" [--cwd DIR]
    python gateway_cli.py tool status
    python gateway_cli.py suggest "truthgit s"
    python gateway_cli.py verify "Water boils at 100C" --domain physics [--risk high]
    python gateway_cli.py terminal
"""

import argparse
import json
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

from command_gateway import (
    DEFAULT_AUDIT_DIR,
    CommandGateway,
    GatewayError,
    ToolCommandFailed,
)
from gateway_settings import SettingsError

load_dotenv()

EXIT_COMMANDS = frozenset({"exit", "quit"})


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="TruthGit Command Safety Gateway — validate and run terminal commands")
    parser.add_argument("--session-id",
        help="Audit session identifier (default: term_<UTC timestamp>)")
    parser.add_argument("--audit-dir", default=DEFAULT_AUDIT_DIR,
        help=f"Directory for the JSONL audit trail (default: {DEFAULT_AUDIT_DIR})")
    parser.add_argument("--no-audit", action="store_true",
        help="Do not write audit records")

    sub = parser.add_subparsers(dest="action", required=True)

    p_check = sub.add_parser("check", help="Print the safety verdict for a command")
    p_check.add_argument("command")

    p_exec = sub.add_parser("exec", help="Validate and run a shell command")
    p_exec.add_argument("command")
    p_exec.add_argument("--cwd", help="Working directory for the command")

    p_tool = sub.add_parser("tool", help="Run a truthgit subcommand")
    p_tool.add_argument("args", nargs=argparse.REMAINDER)

    p_suggest = sub.add_parser("suggest", help="Autocomplete a command prefix")
    p_suggest.add_argument("prefix", nargs="?", default="")

    p_verify = sub.add_parser("verify", help="Governance verification via the local CLI")
    p_verify.add_argument("claim")
    p_verify.add_argument("--domain", required=True)
    p_verify.add_argument("--risk", help="Risk profile (default: from settings)")

    sub.add_parser("terminal", help="Interactive terminal session")

    return parser.parse_args(argv)


def _build_gateway(args: argparse.Namespace) -> CommandGateway:
    session_id = args.session_id or (
        f"term_{datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')}")
    return CommandGateway(
        session_id=session_id,
        audit_dir=args.audit_dir,
        audit_enabled=False if args.no_audit else None,
    )


def _print_result(result) -> None:
    if result.stdout:
        print(result.stdout, end="" if result.stdout.endswith("\n") else "\n")
    if result.stderr:
        print(result.stderr, end="" if result.stderr.endswith("\n") else "\n",
              file=sys.stderr)


def run_terminal(gateway: CommandGateway, stdin=None) -> int:
    """Read lines until EOF or exit; every line goes through execute_shell."""
    stdin = stdin or sys.stdin
    print("TruthGit Terminal. Type commands to interact with the ecosystem.")
    print('Quick commands: truthgit status, truthgit verify "claim"')
    while True:
        print("$ ", end="", flush=True)
        line = stdin.readline()
        if not line:
            print()
            return 0
        command = line.strip()
        if not command:
            continue
        if command in EXIT_COMMANDS:
            return 0
        try:
            result = gateway.execute_shell(command)
        except GatewayError as e:
            print(str(e))
            continue
        _print_result(result)
        if not result.success:
            print(f"[exit {result.exit_code}]")


def main(argv=None) -> int:
    try:
        args = parse_args(argv)
        gateway = _build_gateway(args)

        if args.action == "check":
            verdict = gateway.check_command_safety(args.command)
            print(json.dumps(verdict.to_dict(), indent=2))
            return 0 if verdict.allowed else 1

        if args.action == "exec":
            result = gateway.execute_shell(args.command, args.cwd)
            _print_result(result)
            return result.exit_code if result.exit_code >= 0 else 1

        if args.action == "tool":
            print(gateway.run_tool_command(args.args), end="")
            return 0

        if args.action == "suggest":
            for suggestion in gateway.get_shell_suggestions(args.prefix):
                print(suggestion)
            return 0

        if args.action == "verify":
            result = gateway.governance_verify_local(args.claim, args.domain, args.risk)
            print(json.dumps(result.to_dict(), indent=2))
            return 0

        return run_terminal(gateway)

    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 1
    except ToolCommandFailed as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.result.exit_code if e.result.exit_code > 0 else 1
    except (GatewayError, SettingsError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
