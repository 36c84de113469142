"""
Check that the heartbeat of a running operator is recent enough
"""

# Standard
from datetime import datetime, timedelta
from pathlib import Path
import argparse

# First Party
import alog

# Local
from .. import config
from ..watch_manager.threads.heartbeat import HeartbeatThread
from .base import CmdBase

log = alog.use_channel("MAIN")


class CheckHeartbeatCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("check-heartbeat", help=__doc__)
        runtime_args = parser.add_argument_group("Check Heartbeat Configuration")
        runtime_args.add_argument(
            "--delta",
            "-d",
            required=True,
            type=int,
            help="Max seconds allowed since the last beat",
        )
        runtime_args.add_argument(
            "--file",
            "-f",
            default=None,
            help="Location of the heartbeat file. Defaults to heartbeat_file.",
        )
        return parser

    def cmd(self, args: argparse.Namespace) -> int:
        """Validate the age of the heartbeat file"""
        heartbeat_file = args.file or config.heartbeat_file
        if not heartbeat_file:
            log.error("Health Check failed: no heartbeat file configured")
            return 1

        file_path = Path(heartbeat_file)
        if not file_path.exists():
            log.error("Health Check failed: %s does not exist", file_path)
            return 1

        # Read the most recent time from the heartbeat
        last_beat = file_path.read_text(encoding="utf-8").strip()
        try:
            last_time = datetime.strptime(
                last_beat, HeartbeatThread._DATE_FORMAT  # pylint: disable=protected-access
            )
        except ValueError:
            log.error("Health Check failed: cannot parse heartbeat [%s]", last_beat)
            return 1

        if last_time + timedelta(seconds=args.delta) < datetime.now():
            log.error("Health Check failed: %s is too old", last_beat)
            return 1

        log.debug("Health Check passed: %s", last_beat)
        return 0
