"""
Base class for all odoo-operator commands
"""

# Standard
from typing import Optional
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand of the odoo-operator entrypoint"""

    @abc.abstractmethod
    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command's argument parser subcommand

        Args:
            subparsers (argparse._SubParsersAction): The subparser section for
                the central main parser

        Returns:
            subparser (argparse.ArgumentParser): The configured parser for this
                command
        """

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace) -> Optional[int]:
        """Execute the command with the parsed arguments

        Args:
            args (argparse.Namespace): The parsed command line arguments

        Returns:
            exit_code (Optional[int]): The process exit code. None means 0.
        """
