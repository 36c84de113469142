"""
Package exports
"""

# Local
from . import config, reconcile, status, watch_manager
from .deploy_manager import DeployManagerBase, DryRunDeployManager
from .exceptions import (
    ConfigError,
    InvariantError,
    OperatorError,
    PlatformError,
    PropertySpecError,
)
from .properties import load_property_specs, validate_and_merge
from .reconcile import Reconciler, ReconciliationResult
from .render import render
from .schema import parse_desired_state
from .status import StatusReporter
