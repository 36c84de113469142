"""
Shared constants across the different parts of the odoo operator
"""

# The custom resource that describes an Odoo deployment
API_GROUP = "odoo.sovrin.cloud"
API_VERSION_NAME = "v1alpha1"
API_VERSION = f"{API_GROUP}/{API_VERSION_NAME}"
KIND = "OdooCluster"
PLURAL = "odooclusters"
SINGULAR = "odoocluster"

# Names used to identify the operator and the managed application
APP_NAME = "odoo"
OPERATOR_NAME = "odoo-operator"
FIELD_MANAGER = OPERATOR_NAME

# Annotations the operator writes on managed objects
CONTENT_HASH_ANNOTATION = f"{API_GROUP}/content-hash"
STARTUP_CONFIG_HASH_ANNOTATION = f"{API_GROUP}/startup-config-hash"

# Recommended kubernetes labels
NAME_LABEL = "app.kubernetes.io/name"
INSTANCE_LABEL = "app.kubernetes.io/instance"
VERSION_LABEL = "app.kubernetes.io/version"
COMPONENT_LABEL = "app.kubernetes.io/component"
ROLE_GROUP_LABEL = "app.kubernetes.io/role-group"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

# Roles an instance can take inside an Odoo cluster
WEB_ROLE = "web"
CRON_ROLE = "cron"
ALL_ROLES = [WEB_ROLE, CRON_ROLE]

# Layout of the rendered workloads
CONFIG_FILE_NAME = "odoo.conf"
CONFIG_MOUNT_PATH = "/etc/odoo"
DATA_MOUNT_PATH = "/var/lib/odoo"
CONFIG_VOLUME_NAME = "config"
DATA_VOLUME_NAME = "data"
CONTAINER_NAME = "odoo"

# Delimiter used to access nested dict keys
NESTED_DICT_DELIM = "."
