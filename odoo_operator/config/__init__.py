"""
Library config for the operator. Values come from config.yaml, overridden by
environment variables and command line flags.
"""

# Local
from .config import library_config, validation_config


# Define __getattr__ on this module to delegate to the library config.
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


# Only expose the library config keys
__all__ = list(library_config.keys())
