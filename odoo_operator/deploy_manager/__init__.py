"""
The deploy_manager module holds the interface and implementations for
DeployManager classes. A DeployManager is the object that carries out every
read and write against the cluster.
"""

# Local
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .kube_event import KubeEventType, KubeWatchEvent
from .openshift_deploy_manager import OpenshiftDeployManager
