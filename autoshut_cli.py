#!/usr/bin/env python3
"""
Steam Auto-Shutdown CLI
=======================
Console front-end for the auto-shutdown engine.

Features:
- Lists pending Steam downloads with their game names
- Prompts for the download to wait on (or takes --app-id)
- Shuts the machine down when that download finishes
"""

import argparse
import sys
import signal
import subprocess
from typing import List, Optional, Tuple

from autoshut_core import STATE_MISSING, AutoShutdownConfig, AutoShutdownCore


def build_config(args) -> AutoShutdownConfig:
    """Apply command-line overrides on top of the platform defaults."""
    return AutoShutdownConfig().with_overrides(
        watch_directory=getattr(args, "dir", None),
        poll_interval_seconds=getattr(args, "interval", None),
        match_strategy=getattr(args, "strategy", None),
    )


def pick_download(downloads: List[Tuple[str, str]], answer: str) -> Optional[str]:
    """
    Turn the user's answer into an app id.

    An exact folder name wins; otherwise a list number (1-based) is accepted.
    Anything else is returned as typed so the engine can report it missing.
    """
    answer = answer.strip()
    if not answer:
        return None

    app_ids = [app_id for app_id, _ in downloads]
    if answer in app_ids:
        return answer
    if answer.isdigit() and 1 <= int(answer) <= len(app_ids):
        return app_ids[int(answer) - 1]
    return answer


class AutoShutdownCLI:
    """Command-line interface for the auto-shutdown engine."""

    def __init__(self, core_factory=None):
        self.core = None
        self.core_factory = core_factory or AutoShutdownCore

        # Handle Ctrl+C gracefully
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        print("\n🛑 Stop signal received, auto shutdown cancelled")
        if self.core:
            self.core.stop()
        sys.exit(0)

    def _print_header(self):
        print("=" * 70)
        print("⏻  Steam Auto-Shutdown")
        print("=" * 70)
        print()

    def _print_downloads(self, downloads: List[Tuple[str, str]]):
        if not downloads:
            print("📭 No pending downloads found")
            return
        for i, (app_id, name) in enumerate(downloads, 1):
            print(f"  [{i}] {app_id} - {name}")
        print()

    def _print_logs(self, verbose: bool):
        if not verbose:
            return
        logs, _ = self.core.get_logs()
        for line in logs:
            print(line)

    def _create_core(self, args):
        config = build_config(args)
        print(f"📂 Download folder: {config.watch_directory}")
        return self.core_factory(config)

    def list(self, args):
        """Show pending downloads."""
        self._print_header()
        self.core = self._create_core(args)

        print("🔍 Looking up game names...\n")
        self._print_downloads(self.core.list_downloads())
        self._print_logs(args.verbose)

    def watch(self, args) -> int:
        """Wait for one download to finish, then shut down."""
        self._print_header()
        self.core = self._create_core(args)

        app_id = args.app_id
        app_name = None
        if not app_id:
            print("🔍 Looking up game names...\n")
            downloads = self.core.list_downloads()
            self._print_downloads(downloads)
            if not downloads:
                return 1

            try:
                answer = input("Select a game: ")
            except EOFError:
                print("❌ Error: No selection given")
                return 1

            app_id = pick_download(downloads, answer)
            if not app_id:
                print("❌ Error: No selection given")
                return 1
            app_name = dict(downloads).get(app_id)

        print(f"⏳ Auto shutdown for {app_id}"
              + (f" ({app_name})" if app_name else "")
              + f", checking every {self.core.config.poll_interval_seconds}s")

        try:
            done = self.core.run(app_id, app_name)
        except (OSError, subprocess.CalledProcessError) as e:
            self._print_logs(args.verbose)
            print(f"❌ Shutdown command failed: {e}")
            return 1

        self._print_logs(args.verbose)
        if not done:
            if self.core.get_stats()["state"] == STATE_MISSING:
                print(f'❌ Game download "{app_id}" doesn\'t exist')
            else:
                print("⏸  Auto shutdown cancelled")
            return 1

        print("✅ Download finished, shutting down")
        return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Shut the computer down when a Steam download finishes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Pick a download interactively and wait for it
  autoshut watch

  # Wait for a known app id, checking every 10 seconds
  autoshut watch --app-id 221100 --interval 10

  # List pending downloads in a custom Steam library
  autoshut list --dir "D:\\SteamLibrary\\steamapps\\downloading"
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--dir', help='Steam downloading folder (default: platform Steam path)')
    common.add_argument('--interval', type=int, help='Seconds between checks (default: 30)')
    common.add_argument('--strategy', choices=['window', 'kmp'], help='Page scan algorithm')
    common.add_argument('--verbose', '-v', action='store_true', help='Show detailed logs')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    subparsers.add_parser('list', parents=[common], help='List pending downloads')

    watch_parser = subparsers.add_parser('watch', parents=[common],
                                         help='Shut down when a download finishes')
    watch_parser.add_argument('--app-id', help='App id to wait for (prompts if omitted)')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    cli = AutoShutdownCLI()

    if args.command == 'list':
        cli.list(args)
    elif args.command == 'watch':
        sys.exit(cli.watch(args))


if __name__ == "__main__":
    main()
