"""Command-line interface for zbxgpu."""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from zbxgpu import __version__
from zbxgpu.agent import detect_agent, detect_userparam_path, include_confirmed
from zbxgpu.core.config import load_settings
from zbxgpu.core.context import Context
from zbxgpu.core.directives import MalformedDirectiveError, directive_for_line
from zbxgpu.core.logging import InstallLogger, default_log_dir, get_log_path, query_logs
from zbxgpu.core.merger import DirectiveMerger
from zbxgpu.core.output import Output
from zbxgpu.installer import RECIPES, InstallError, Installer
from zbxgpu.lib.process import check_tool

DOCTOR_TOOLS = ["nvidia-smi", "systemctl", "curl", "wget", "git"]


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="zbxgpu",
        description="Install NVIDIA GPU UserParameters for the Zabbix agent",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"zbxgpu {__version__}",
    )
    parser.add_argument(
        "--format",
        choices=["plain", "json"],
        default="plain",
        help="Output format (default: plain)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only echo errors while installing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # install command
    install_parser = subparsers.add_parser("install", help="Install GPU checks for the agent")
    install_parser.add_argument(
        "--recipe",
        choices=sorted(RECIPES),
        default="vendored",
        help="Installer variant (default: vendored)",
    )
    install_parser.add_argument(
        "--no-clone",
        action="store_true",
        help="Skip cloning the upstream reference repository",
    )
    install_parser.add_argument(
        "--no-restart",
        action="store_true",
        help="Do not restart the agent service",
    )

    # merge command
    merge_parser = subparsers.add_parser("merge", help="Merge missing UserParameters from a base file")
    merge_parser.add_argument("base", help="Base template file")
    merge_parser.add_argument("target", help="Configuration file to extend")

    # ensure command
    ensure_parser = subparsers.add_parser("ensure", help="Ensure a single UserParameter line")
    ensure_parser.add_argument("target", help="Configuration file")
    ensure_parser.add_argument("line", help="Full UserParameter=key,command line")
    ensure_parser.add_argument(
        "--create",
        action="store_true",
        help="Create the target file if it does not exist",
    )
    ensure_parser.add_argument(
        "--header",
        help="Header comment for a newly created file",
    )

    # detect command
    subparsers.add_parser("detect", help="Show detected agent and userparameter path")

    # doctor command
    subparsers.add_parser("doctor", help="Check tool availability and agent installation")

    # logs command
    logs_parser = subparsers.add_parser("logs", help="Show installer run logs")
    logs_parser.add_argument("recipe", choices=sorted(RECIPES), help="Recipe name")
    logs_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Log date as YYYY-MM-DD (default: today)",
    )
    logs_parser.add_argument(
        "--level",
        choices=["debug", "info", "warning", "error"],
        default="debug",
        help="Minimum level (default: debug)",
    )
    logs_parser.add_argument("--limit", type=int, help="Maximum entries")

    return parser


def _log_dir(settings) -> Path:
    return Path(settings.log_dir) if settings.log_dir else default_log_dir()


def _fail(message: str, path: str | None = None) -> None:
    if path:
        print(f"Error: {message} [{path}]", file=sys.stderr)
    else:
        print(f"Error: {message}", file=sys.stderr)


def cmd_install(args: argparse.Namespace, context: Context) -> int:
    """Run an installer recipe."""
    settings = load_settings(context)
    if args.quiet:
        settings.quiet = True
    if args.no_clone:
        settings.clone_upstream = False

    output = Output()
    log_path = get_log_path(args.recipe, _log_dir(settings))
    with InstallLogger(args.recipe, log_path=log_path, quiet=settings.quiet) as logger:
        installer = Installer(
            context,
            settings,
            logger,
            output,
            restart=not args.no_restart,
        )
        failure = None
        try:
            RECIPES[args.recipe](installer)
        except InstallError as e:
            failure = (str(e), e.path)
        except OSError as e:
            failure = (e.strerror or str(e), e.filename)

        if failure:
            message, path = failure
            if path and str(path) not in message:
                message = f"{message} [{path}]"
            logger.error(message, path=path)
            output.error(message)
            output.render(args.format)
            return 1
        logger.info("Done.")

    output.render(args.format)
    return 0


def cmd_merge(args: argparse.Namespace, context: Context) -> int:
    """Merge missing directives from a base file into a target."""
    merger = DirectiveMerger(context)
    try:
        report = merger.merge_all_directives(args.base, args.target)
    except OSError as e:
        _fail(e.strerror or str(e), e.filename)
        return 1

    if args.format == "json":
        print(json.dumps({"target": args.target, **report.to_dict()}, indent=2))
    else:
        for key in report.merged_keys:
            print(f"merged   {key}")
        for key in report.skipped_keys:
            print(f"present  {key}")
        for line in report.malformed:
            print(f"Warning: skipped malformed line: {line}", file=sys.stderr)
        print(f"{len(report.merged_keys)} merged, {len(report.skipped_keys)} already present")

    return 0


def cmd_ensure(args: argparse.Namespace, context: Context) -> int:
    """Ensure one directive line is present."""
    try:
        directive = directive_for_line(args.line)
    except MalformedDirectiveError as e:
        _fail(str(e))
        return 2

    merger = DirectiveMerger(context)
    try:
        created = False
        if args.create:
            created = merger.ensure_file_exists(args.target, header=args.header)
        outcome = merger.ensure_directive_present(args.target, directive.key, directive.raw_line)
    except ValueError as e:
        _fail(str(e))
        return 2
    except OSError as e:
        _fail(e.strerror or str(e), e.filename)
        return 1

    if args.format == "json":
        print(json.dumps({
            "target": args.target,
            "key": str(directive.key),
            "outcome": outcome.value,
            "created": created,
        }, indent=2))
    else:
        print(f"{outcome.value}  {directive.key}")

    return 0


def cmd_detect(args: argparse.Namespace, context: Context) -> int:
    """Show detected agent flavor and paths."""
    settings = load_settings(context)
    agent = detect_agent(context, settings.zabbix_dir)
    userparam_path = detect_userparam_path(context, zabbix_dir=settings.zabbix_dir)
    included = include_confirmed(context, settings.zabbix_dir)

    data = {
        "agent": agent.name if agent else None,
        "service": agent.service if agent else None,
        "main_conf": agent.main_conf if agent else None,
        "include_dir": agent.include_dir if agent else None,
        "userparam_path": userparam_path,
        "include_confirmed": included,
    }

    if args.format == "json":
        print(json.dumps(data, indent=2))
    else:
        if agent:
            print(f"Agent:       {agent.name} (service: {agent.service})")
            print(f"Main conf:   {agent.main_conf}")
            print(f"Include dir: {agent.include_dir}")
        else:
            print("Agent:       not found")
        print(f"Userparams:  {userparam_path}")
        print(f"Include:     {'confirmed' if included else 'not confirmed'}")

    return 0 if agent else 1


def cmd_doctor(args: argparse.Namespace, context: Context) -> int:
    """Check tool availability and agent installation."""
    settings = load_settings(context)
    tool_status = {tool: check_tool(tool, context) for tool in DOCTOR_TOOLS}
    agent = detect_agent(context, settings.zabbix_dir)

    problems = []
    if not tool_status["nvidia-smi"]:
        problems.append("nvidia-smi not found (NVIDIA driver missing?)")
    if not tool_status["systemctl"]:
        problems.append("systemctl not found")
    if not tool_status["curl"] and not tool_status["wget"]:
        problems.append("neither curl nor wget found (needed by the upstream recipe)")
    if agent is None:
        problems.append("no zabbix-agent2 or zabbix-agent service found")

    if args.format == "json":
        print(json.dumps({
            "tools": tool_status,
            "agent": agent.name if agent else None,
            "problems": problems,
        }, indent=2))
    else:
        print("=== zbxgpu doctor ===\n")
        print("Tools:")
        for tool, available in tool_status.items():
            status = "✓" if available else "✗ MISSING"
            print(f"  {tool}: {status}")
        print()
        print(f"Agent: {agent.service if agent else 'not found'}")
        print()
        if problems:
            print(f"⚠ {len(problems)} problem(s):")
            for problem in problems:
                print(f"  - {problem}")
        else:
            print("✓ Ready to install")

    return 1 if problems else 0


def cmd_logs(args: argparse.Namespace, context: Context) -> int:
    """Show installer run logs."""
    settings = load_settings(context)
    entries = query_logs(
        _log_dir(settings),
        args.recipe,
        log_date=args.date,
        min_level=args.level,
        limit=args.limit,
    )

    if args.format == "json":
        print(json.dumps(entries, indent=2))
        return 0

    if not entries:
        print("No log entries.")
        return 0

    for entry in entries:
        print(f"{entry.get('timestamp', '')} {entry.get('level', '').upper():7} {entry.get('message', '')}")
    return 0


def main(argv: list[str] | None = None, context: Context | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "install": cmd_install,
        "merge": cmd_merge,
        "ensure": cmd_ensure,
        "detect": cmd_detect,
        "doctor": cmd_doctor,
        "logs": cmd_logs,
    }

    return commands[args.command](args, context or Context())


if __name__ == "__main__":
    sys.exit(main())
