"""
Print the CustomResourceDefinition of OdooCluster
"""

# Standard
import argparse
import sys

# Third Party
import yaml

# Local
from ..schema import build_crd
from .base import CmdBase


class PrintCrdCmd(CmdBase):
    __doc__ = __doc__

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("crd", help=__doc__)

    def cmd(self, args: argparse.Namespace) -> int:
        yaml.safe_dump(build_crd(), sys.stdout, sort_keys=False)
        return 0
