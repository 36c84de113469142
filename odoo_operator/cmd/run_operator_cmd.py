"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal
import sys

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DryRunDeployManager
from ..properties import PropertySpecTable, load_property_specs
from ..reconcile import Reconciler
from ..schema import Phase, ResourceKey
from ..watch_manager import OdooWatchManager
from .base import CmdBase

log = alog.use_channel("MAIN")

# Passes run for a dry run CR before giving up on it settling
DRY_RUN_MAX_PASSES = 5


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) An OdooCluster yaml to reconcile and print the result of",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace) -> int:
        # Validate args
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Fail fast if the property spec cannot be loaded
        property_specs = load_property_specs(config.property_spec_path)

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)

        if args.cr:
            return self._reconcile_cr(args.cr, resources, property_specs)

        deploy_manager = None
        if config.dry_run:
            log.info("Running DRY RUN")
            deploy_manager = DryRunDeployManager(resources=resources)
        watch_manager = OdooWatchManager(property_specs, deploy_manager=deploy_manager)

        # Register the signal handler to stop the watches
        def do_stop(signum, *_):  # pragma: no cover
            log.info("Received signal %s", signum)
            watch_manager.shutdown.set()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        # Run the watch manager
        log.info("Starting Watches")
        if watch_manager.watch():
            watch_manager.wait()
        watch_manager.stop()

        # All done!
        log.info("SHUTTING DOWN")
        return watch_manager.exit_code

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource for resource in yaml.safe_load_all(handle) if resource
                        )
        return all_resources

    @staticmethod
    def _reconcile_cr(
        cr_path: str,
        resources: List[dict],
        property_specs: PropertySpecTable,
    ) -> int:
        """Reconcile a single CR against an in-memory cluster and print every
        object the cluster ends up holding
        """
        log.info("Applying CR [%s]", cr_path)
        with open(cr_path, encoding="utf-8") as handle:
            cr_manifest = yaml.safe_load(handle)
        metadata = cr_manifest.setdefault("metadata", {})
        metadata.setdefault("namespace", "default")
        log.debug3(cr_manifest)

        deploy_manager = DryRunDeployManager(resources=[*resources, cr_manifest])
        reconciler = Reconciler(deploy_manager, property_specs)
        key = ResourceKey(namespace=metadata["namespace"], name=metadata.get("name"))

        result = None
        for _ in range(DRY_RUN_MAX_PASSES):
            result = reconciler.safe_reconcile(key)
            if not result.requeue or result.requeue_after.total_seconds() > 0:
                break

        objects = [
            obj
            for kinds in deploy_manager.get_cluster_content().values()
            for versions in kinds.values()
            for names in versions.values()
            for obj in names.values()
        ]
        yaml.safe_dump_all(objects, sys.stdout, sort_keys=False)

        phase = result.phase if result else None
        log.info("Dry run finished in phase %s", phase.value if phase else None)
        return 1 if phase in [None, Phase.FAILED] else 0
