"""ccbell entry point — one process per hook event."""

import argparse
import logging
import re
import sys
from datetime import datetime

from rich.table import Table

from ccbell.config import ensure_config, get_settings, load_config
from ccbell.errors import StatePersistenceError
from ccbell.events import Event, EventType, Outcome
from ccbell.pipeline import NotificationPipeline
from ccbell.utils.logger import console, setup_logging

logger = logging.getLogger(__name__)

_DURATION_RE = re.compile(r"^(?:(\d+)h)?(?:(\d+)m)?(?:(\d+)s)?$")


def parse_duration(text: str) -> float:
    """Parse ``90s``, ``30m``, ``2h``, ``1h30m`` or bare seconds.

    Raises:
        ValueError: If the text is not a positive duration.
    """
    text = text.strip().lower()
    try:
        seconds = float(text)
    except ValueError:
        match = _DURATION_RE.match(text)
        if not text or not match:
            raise ValueError(f"invalid duration: {text!r}") from None
        hours, minutes, secs = (int(g) if g else 0 for g in match.groups())
        seconds = float(hours * 3600 + minutes * 60 + secs)
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {text!r}")
    return seconds


def _volume(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError("volume must be between 0.0 and 1.0")
    return value


def _meta_pair(text: str) -> tuple[str, str]:
    key, sep, value = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    return key, value


def _duration(text: str) -> float:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="ccbell",
        description="ccbell — sound notifications for coding assistant hook events",
    )
    parser.add_argument(
        "event",
        nargs="?",
        default=EventType.STOP.value,
        choices=[e.value for e in EventType],
        help="Hook event that fired (default: stop)",
    )
    parser.add_argument("--volume", type=_volume, help="Override volume (0.0–1.0)")
    parser.add_argument("--profile", help="Use this profile for this invocation only")
    parser.add_argument(
        "--meta",
        type=_meta_pair,
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Event metadata for filters (repeatable)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the decision without playing or changing state",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_mutually_exclusive_group()
    commands.add_argument(
        "--quiet-for",
        type=_duration,
        metavar="DURATION",
        help="Mute all notifications for a while (e.g. 30m, 1h30m)",
    )
    commands.add_argument(
        "--resume",
        action="store_true",
        help="End a --quiet-for early",
    )
    commands.add_argument(
        "--use-profile",
        metavar="NAME",
        help="Switch the active profile until changed again",
    )
    commands.add_argument(
        "--status",
        action="store_true",
        help="Show mute, cooldown, throttle and queue state",
    )
    commands.add_argument(
        "--init-config",
        action="store_true",
        help="Write the default config file if missing",
    )
    return parser.parse_args(argv)


def _print_status(status: dict) -> None:
    """Render pipeline status."""
    console.print("\n[bold]ccbell status[/]\n")
    enabled = "[green]enabled[/]" if status["enabled"] else "[red]disabled[/]"
    console.print(f"  Notifications: {enabled}")
    console.print(f"  Profile: {status['profile']}")

    remaining = status["quick_disable_remaining"]
    if remaining > 0:
        console.print(f"  [yellow]Muted for another {remaining / 60:.1f}m[/]")

    throttle = status["throttle"]
    if throttle["max"]:
        console.print(
            f"  Throttle: {throttle['count']} / {throttle['max']} "
            f"in {throttle['window']:.0f}s"
        )
    console.print(f"  Queue depth: {status['queue_depth']}")

    if status["cooldowns"]:
        console.print("  Last played:")
        for event, ago in status["cooldowns"].items():
            console.print(f"    {event}: {ago:.0f}s ago")

    if status["recent_outcomes"]:
        table = Table(title="Recent outcomes", show_lines=False)
        table.add_column("Time")
        table.add_column("Event")
        table.add_column("Status")
        table.add_column("Detail")
        for o in status["recent_outcomes"]:
            at = datetime.fromtimestamp(o.get("at") or 0).strftime("%H:%M:%S")
            detail = o.get("reason") or o.get("sound") or ""
            if o.get("detail"):
                detail = f"{detail} ({o['detail']})"
            table.add_row(at, str(o.get("event")), str(o.get("status")), detail)
        console.print(table)
    console.print()


def _print_dry_run(pipeline: NotificationPipeline, event: Event, outcome: Outcome) -> None:
    console.print(f"\n[bold]Dry run: {event.type.value}[/]\n")
    for name, verdict in pipeline.explain(event):
        if verdict.proceed:
            console.print(f"  [green]✅[/] {name}")
        else:
            console.print(f"  [red]❌[/] {name}: {verdict.reason.value} {verdict.detail}")
    console.print()
    if outcome.reason is not None:
        console.print(f"  Would suppress: [yellow]{outcome.reason.value}[/]\n")
    else:
        console.print(f"  Would play: {outcome.sound} at volume {outcome.volume:.2f}\n")


def main(argv: list[str] | None = None) -> int:
    """Run ccbell. Returns the process exit code."""
    args = _parse_args(argv)
    settings = get_settings()
    setup_logging(settings.log_dir, verbose=args.verbose, log_level=settings.log_level)

    try:
        created = ensure_config(settings.config_path)
    except OSError as exc:
        logger.warning("Could not create default config: %s", exc)
        created = False
    config = load_config(settings.config_path)
    if config.debug and not args.verbose:
        setup_logging(settings.log_dir, verbose=True, log_level=settings.log_level)

    pipeline = NotificationPipeline.from_settings(config, settings)

    try:
        if args.init_config:
            state = "Created" if created else "Exists"
            console.print(f"{state}: {settings.config_path}")
            return 0

        if args.status:
            _print_status(pipeline.status())
            return 0

        if args.quiet_for is not None:
            record = pipeline.quick_disable(args.quiet_for)
            until = datetime.fromtimestamp(record.expiry).strftime("%H:%M")
            console.print(f"ccbell muted until {until}")
            return 0

        if args.resume:
            if pipeline.resume():
                console.print("ccbell unmuted")
            else:
                console.print("ccbell was not muted")
            return 0

        if args.use_profile is not None:
            pipeline.use_profile(args.use_profile)
            console.print(f"Active profile: {args.use_profile}")
            return 0

        event = Event(
            type=EventType(args.event),
            metadata=dict(args.meta),
            profile=args.profile,
            volume=args.volume,
            dry_run=args.dry_run,
        )
        outcome = pipeline.run(event)
        if args.dry_run:
            _print_dry_run(pipeline, event, outcome)
        return 0

    except StatePersistenceError as exc:
        logger.error("ccbell could not persist state: %s", exc)
        return 1
    except Exception:
        logger.exception("ccbell failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
