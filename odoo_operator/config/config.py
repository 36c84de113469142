"""
Load the operator's library config once at import. Every key in config.yaml can
be overridden with an environment variable of the same name in upper case
(e.g. WATCH_NAMESPACE), and later with a command line flag.
"""

# Standard
import os

# First Party
import aconfig

# Local
from ..log_format import configure_logging
from .validation import get_invalid_params

_CONFIG_DIR = os.path.dirname(__file__)


def _load(file_name: str, override_env_vars: bool) -> aconfig.Config:
    return aconfig.Config.from_yaml(
        os.path.join(_CONFIG_DIR, file_name),
        override_env_vars=override_env_vars,
    )


library_config = _load("config.yaml", override_env_vars=True)

# The validation rules themselves are never taken from the environment
validation_config = _load("config_validation.yaml", override_env_vars=False)

invalid_params = get_invalid_params(library_config, validation_config)
if invalid_params:
    raise ValueError(
        "Refusing to start with invalid operator config values for: "
        + ", ".join(sorted(invalid_params))
    )

configure_logging(library_config)
