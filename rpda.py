#!/usr/bin/env python3
"""
MIT License

Copyright (c) 2025 Cecilia Martin

Permission is hereby granted, free of charge, to any person obtaining a copy
of this software and associated documentation files (the "Software"), to deal
in the Software without restriction, including without limitation the rights
to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
copies of the Software, and to permit persons to whom the Software is
furnished to do so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.

RecoverPoint Direct Access - toggle direct image access on consistency group copies
"""

import argparse
import logging
import sys
import time
from typing import Callable, List, Optional, TextIO

from rpaccess import AccessStateController
from rpcopies import GroupDirectory, resolve_copy
from rpbase import Client, create_credentials
from rpconfig import (
    Config,
    default_config_path,
    find_config,
    load_config,
    write_template,
)
from rpmodels import (
    AuthorizationError,
    BatchResult,
    ConfigurationError,
    Direction,
    GatewayError,
    GroupNotFoundError,
    Outcome,
    OutcomeStatus,
    ReplicationGroup,
    ResolutionError,
    SelectionIntent,
)
from rputils import (
    OUTCOME_COLUMNS,
    STATUS_COLUMNS,
    display_table,
    export_csv,
    outcome_rows,
    status_rows,
)

logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


class BatchOrchestrator:
    """
    Applies the access-state transition to one or many consistency groups.

    Groups run strictly one after another with config.delay seconds between
    them. A failure in one group becomes that group's Outcome and never
    stops the batch.
    """

    def __init__(
        self,
        client,
        config: Config,
        directory: Optional[GroupDirectory] = None,
        controller: Optional[AccessStateController] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.config = config
        self.directory = directory or GroupDirectory(client)
        self.controller = controller or AccessStateController(
            client, self.directory, config, sleep=sleep
        )
        self.sleep = sleep
        self.clock = clock

    def _failed(self, group_name: str, error: Exception, copy_name: str = "") -> Outcome:
        logger.error(f"{group_name} - {error}")
        return Outcome(
            group_name=group_name,
            status=OutcomeStatus.FAILED,
            copy_name=copy_name,
            reason=str(error),
            simulated=self.config.check_mode,
        )

    def target_groups(self) -> List[ReplicationGroup]:
        groups = self.directory.list_groups()
        if self.config.authorized_only:
            groups = self.directory.filter_administered(groups)
        return groups

    def run_one(
        self, group: ReplicationGroup, intent: SelectionIntent, direction: Direction
    ) -> Outcome:
        """
        Resolve the target copy from a fresh snapshot and transition it.

        Read failures for this group (e.g. it was removed mid-run) become
        its FAILED outcome; only group enumeration is fatal to a batch.
        """
        try:
            loaded = self.directory.load_group(group)
            copy = resolve_copy(loaded.copies, intent, self.config.identifiers)
        except (GatewayError, ResolutionError) as e:
            return self._failed(group.name, e)

        logger.info(f"{group.name} - Selected copy {copy.name} ({copy.role or 'UNKNOWN'})")
        try:
            return self.controller.run(group.name, copy, direction)
        except GatewayError as e:
            return self._failed(group.name, e, copy_name=copy.name)

    def run_all(
        self,
        intent: SelectionIntent,
        direction: Direction,
        groups: Optional[List[ReplicationGroup]] = None,
    ) -> BatchResult:
        """
        Run every group in directory order.

        Args:
            intent: Copy selection applied to each group
            direction: Direction.ENABLE or Direction.DISABLE
            groups: Explicit group list (default: all groups, filtered to
                    administered ones when authorized_only is set)

        Returns:
            BatchResult with one Outcome per group and the elapsed seconds
        """
        start = self.clock()
        if groups is None:
            groups = self.target_groups()

        logger.info(f"Operating on {len(groups)} consistency group(s): {direction.value} {intent}")
        outcomes = []
        for index, group in enumerate(groups):
            outcomes.append(self.run_one(group, intent, direction))
            if index < len(groups) - 1 and self.config.delay:
                logger.debug(f"Waiting {self.config.delay}s before next group")
                self.sleep(self.config.delay)

        elapsed = self.clock() - start
        logger.info(f"Done. (took {elapsed:.1f}s)")
        return BatchResult(outcomes=outcomes, elapsed=elapsed)

    def run_named(
        self, group_name: str, intent: SelectionIntent, direction: Direction
    ) -> BatchResult:
        """Single group by display name, with the authorization check when enabled"""
        start = self.clock()
        try:
            group = self.directory.find_group(group_name)
            if self.config.authorized_only:
                if group.id not in self.directory.administered_group_ids():
                    raise AuthorizationError(group_name, self.config.username)
        except (GroupNotFoundError, AuthorizationError) as e:
            outcome = self._failed(group_name, e)
        else:
            outcome = self.run_one(group, intent, direction)

        elapsed = self.clock() - start
        logger.info(f"Done. (took {elapsed:.1f}s)")
        return BatchResult(outcomes=[outcome], elapsed=elapsed)


def display_status(
    directory: GroupDirectory,
    config: Config,
    group_name: Optional[str] = None,
    csv_path: Optional[str] = None,
    csv_only: bool = False,
    output: TextIO = None,
) -> None:
    """
    Show copies of one group (group_name) or all groups.

    Raises:
        GroupNotFoundError: group_name does not exist
    """
    if group_name:
        groups = [directory.find_group(group_name)]
    else:
        groups = directory.list_groups()
    rows = status_rows([directory.load_group(g) for g in groups], config.identifiers)

    if not csv_only:
        display_table(
            rows,
            columns=STATUS_COLUMNS,
            output=output,
            empty_message="No consistency groups found.",
        )

    if csv_path:
        with open(csv_path, "w", newline="") as f:
            export_csv(rows, f, columns=STATUS_COLUMNS)
        logger.info(f"Saved copy status to CSV: {csv_path}")


def display_outcomes(result: BatchResult, output: TextIO = None) -> None:
    if output is None:
        output = sys.stdout
    output.write("\n" + "=" * 100 + "\n")
    output.write(f"Summary ({len(result.outcomes)} group(s), took {result.elapsed:.1f}s):\n")
    output.write("=" * 100 + "\n")
    display_table(
        outcome_rows(result),
        columns=OUTCOME_COLUMNS,
        output=output,
        empty_message="No consistency groups processed.",
    )


def validate_args(args) -> Optional[SelectionIntent]:
    """
    Validate action-specific arguments.

    Args:
        args: Parsed command-line arguments

    Returns:
        SelectionIntent for enable/finish, None for list/status

    Raises:
        ValueError: If the arguments do not make sense for the action
    """
    if args.action == "list":
        return None

    if not args.group and not args.all:
        raise ValueError(f"Either --all or --group must be specified for '{args.action}'")

    if args.group and args.all:
        logger.info(f"Both --group and --all provided; operating on group {args.group} only")
        args.all = False

    if args.action == "status":
        return None

    if args.all and args.copy:
        raise ValueError("--copy cannot be used with --all")

    chosen = [flag for flag in ("copy", "test", "dr") if getattr(args, flag)]
    if not chosen:
        if args.all:
            raise ValueError("One of --test or --dr must be specified")
        raise ValueError("One of --test --dr or --copy must be specified")
    if len(chosen) > 1:
        raise ValueError("Only one of --copy, --test or --dr can be specified")

    if args.copy:
        return SelectionIntent.by_name(args.copy)
    return SelectionIntent.by_role(SelectionIntent.TEST if args.test else SelectionIntent.DR)


def build_client(config: Config, prompt: bool = False, client_factory=None):
    """
    Create the API gateway client, prompting for the password when needed.

    Args:
        config: Loaded configuration
        prompt: Always prompt for the password (e.g. --user override)
        client_factory: Optional factory function for creating clients (for testing)
    """
    if client_factory is None:
        client_factory = Client

    password = None if prompt else config.password
    logger.info(f"Connecting to RecoverPoint {config.url}...")
    creds = create_credentials(config.url, config.username, password, verify=config.verify_ssl)
    return client_factory(creds)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="RecoverPoint Direct Access - enable or finish direct image access on consistency group copies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List all consistency group names
  python3 rpda.py --action list

  # Display replication status for all groups, or a single group
  python3 rpda.py --action status --all
  python3 rpda.py --action status --group My_CG --csv my_cg.csv

  # Enable direct image access on the latest test copy for ALL groups
  python3 rpda.py --action enable --all --test

  # Enable direct image access on the latest DR copy for a single group
  python3 rpda.py --action enable --group My_CG --dr

  # Enable direct image access on a copy by name (single group only)
  python3 rpda.py --action enable --group My_CG --copy TC_My_CG

  # Disable image access and start transfer for ALL groups (dry run)
  python3 rpda.py --action finish --all --test --check
        """,
    )
    parser.add_argument(
        "--action", choices=["list", "status", "enable", "finish"], default="status"
    )
    parser.add_argument("--group", help="Consistency group name")
    parser.add_argument(
        "--all", action="store_true", help="Operate on all consistency groups"
    )
    parser.add_argument("--copy", help="Exact copy name (only usable with --group)")
    parser.add_argument("--test", action="store_true", help="Use the latest test copy image")
    parser.add_argument("--dr", action="store_true", help="Use the latest DR copy image")
    parser.add_argument(
        "--config", help=f"Config file (default: {default_config_path()})"
    )
    parser.add_argument(
        "--user", help="Override the configured username (forces a password prompt)"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check mode, no changes will be made"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--delay", type=float, help="Seconds to wait between consistency groups with --all"
    )
    parser.add_argument(
        "--polldelay", type=float, help="Seconds to wait between status polling requests"
    )
    parser.add_argument("--pollmax", type=int, help="Maximum number of status poll attempts")
    parser.add_argument(
        "--csv",
        metavar="FILEPATH",
        help="Save status to CSV file (status action only)",
    )
    parser.add_argument(
        "--csv-only",
        action="store_true",
        help="Export to CSV without displaying to screen (requires --csv)",
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    path = find_config(args.config)
    if path is None:
        write_template(default_config_path())
        sys.exit(0)

    try:
        config = load_config(path).with_overrides(
            username=args.user,
            delay=args.delay,
            poll_delay=args.polldelay,
            poll_max=args.pollmax,
            check_mode=True if args.check else None,
        )
        intent = validate_args(args)
        if args.csv_only and not args.csv:
            raise ValueError("--csv-only requires --csv FILEPATH")
        client = build_client(config, prompt=bool(args.user))
    except (ConfigurationError, ValueError, OSError) as e:
        logger.error(str(e))
        sys.exit(1)

    if config.check_mode:
        logger.info("Check mode enabled: no changes will be made")

    directory = GroupDirectory(client)
    try:
        if args.action == "list":
            for name in directory.list_group_names():
                print(name)
            return

        if args.action == "status":
            display_status(
                directory,
                config,
                group_name=args.group,
                csv_path=args.csv,
                csv_only=args.csv_only,
            )
            return

        direction = Direction.ENABLE if args.action == "enable" else Direction.DISABLE
        orchestrator = BatchOrchestrator(client, config, directory=directory)
        if args.group:
            result = orchestrator.run_named(args.group, intent, direction)
        else:
            result = orchestrator.run_all(intent, direction)
    except (GatewayError, GroupNotFoundError, OSError) as e:
        logger.error(str(e))
        sys.exit(1)

    display_outcomes(result)
    if result.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
