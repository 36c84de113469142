"""
Log setup for the operator and the JSON format that carries the OdooCluster
being reconciled
"""

# First Party
from alog import AlogJsonFormatter
import alog


class OperatorJsonFormatter(AlogJsonFormatter):
    """Custom Log Format that extends AlogJsonFormatter with the thread and
    the identity of the OdooCluster a record was logged for. Records opt in by
    passing extra={"resource": <ResourceKey or manifest dict>}.
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "kind",
        "namespace",
        "resourceName",
        "resourceVersion",
    ]

    def format(self, record):
        resource = getattr(record, "resource", None)
        if isinstance(resource, dict):
            metadata = resource.get("metadata", {})
            record.kind = resource.get("kind")
            record.namespace = metadata.get("namespace")
            record.resourceName = metadata.get("name")
            record.resourceVersion = metadata.get("resourceVersion")
        elif resource is not None:
            record.namespace = getattr(resource, "namespace", None)
            record.resourceName = getattr(resource, "name", None)

        return super().format(record)


def configure_logging(log_config):
    """(Re)configure alog from the log_* keys of the library config"""
    alog.configure(
        default_level=log_config.log_level,
        filters=log_config.log_filters,
        formatter=OperatorJsonFormatter() if log_config.log_json else "pretty",
        thread_id=log_config.log_thread_id,
    )
