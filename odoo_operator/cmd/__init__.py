"""
This module holds all of the command classes for the operator's main entrypoint
"""

# Local
from .base import CmdBase
from .check_heartbeat import CheckHeartbeatCmd
from .print_crd_cmd import PrintCrdCmd
from .run_operator_cmd import RunOperatorCmd
