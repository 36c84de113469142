#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the odoo operator
"""

# Standard
from typing import Dict, List, Tuple
import argparse
import sys

# First Party
import aconfig
import alog

# Local
from .cmd import CheckHeartbeatCmd, CmdBase, PrintCrdCmd, RunOperatorCmd
from .config import library_config
from .exceptions import PropertySpecError
from .log_format import configure_logging

## Constants ###################################################################

log = alog.use_channel("MAIN")

# The first command is the one used when no command is named
COMMANDS = [RunOperatorCmd, CheckHeartbeatCmd, PrintCrdCmd]

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}

## Helpers #####################################################################


def parse_bool(value: str) -> bool:
    """Flag type for boolean config keys so that a true default can be turned
    off from the command line (--log_json false)
    """
    lowered = str(value).lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise argparse.ArgumentTypeError(f"Not a boolean: {value}")


def library_config_flags(
    config_obj: aconfig.AttributeAccessDict, path: List[str] = None
) -> Dict[str, List[str]]:
    """Walk the library config and map the flag name of every leaf key to its
    path in the config tree
    """
    path = path or []
    flags = {}
    for key, val in config_obj.items():
        key_path = path + [key]
        if isinstance(val, aconfig.AttributeAccessDict):
            flags.update(library_config_flags(val, key_path))
        else:
            flags[".".join(key_path)] = key_path
    return flags


def _config_value(key_path: List[str]):
    value = library_config
    for key in key_path:
        value = value[key]
    return value


def add_library_config_args(parser) -> Dict[str, List[str]]:
    """Add a --<key> override flag for every library config key. Returns the
    map from argparse dest to the config path the dest overrides.
    """
    setters = {}
    for flag_name, key_path in library_config_flags(library_config).items():
        if f"--{flag_name}" in parser._option_string_actions:  # pylint: disable=protected-access
            continue
        default = _config_value(key_path)
        dest = "_".join(key_path)
        kwargs = {
            "default": default,
            "dest": dest,
            "help": f"Library config override for {flag_name} (see odoo_operator.config)",
        }
        if isinstance(default, bool):
            kwargs.update(type=parse_bool, nargs="?", const=True)
        elif isinstance(default, list):
            kwargs["nargs"] = "*"
        elif default is not None:
            kwargs["type"] = type(default)
        parser.add_argument(f"--{flag_name}", **kwargs)
        setters[dest] = key_path
    return setters


def update_library_config(args: argparse.Namespace, setters: Dict[str, List[str]]):
    """Write the parsed flag values back into the library config"""
    for dest, key_path in setters.items():
        section = library_config
        for key in key_path[:-1]:
            section = section[key]
        section[key_path[-1]] = getattr(args, dest)


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, List[str]]]:
    """Add the subparser for a command, bind its function and give it the
    library config flags
    """
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    setters = add_library_config_args(parser.add_argument_group("Library Configuration"))
    return parser, setters


def parse_args(argv: List[str]) -> Tuple[argparse.Namespace, Dict[str, List[str]]]:
    """Parse the command line, falling back to the default command when the
    first argument does not name one
    """
    parser = argparse.ArgumentParser(description=__doc__)
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    commands = {}
    for cmd_class in COMMANDS:
        cmd_parser, setters = add_command(subparsers, cmd_class())
        commands[cmd_parser.prog.split()[-1]] = (cmd_parser, setters)

    if not argv or argv[0] not in commands:
        default_parser, default_setters = next(iter(commands.values()))
        return default_parser.parse_args(argv), default_setters
    args = parser.parse_args(argv)
    return args, commands[args.command][1]


## Main ########################################################################


def main(argv=None) -> int:
    """The main module provides the executable entrypoint for the operator"""
    argv = sys.argv[1:] if argv is None else argv
    args, setters = parse_args(argv)
    update_library_config(args, setters)
    configure_logging(library_config)

    try:
        return args.func(args) or 0
    except PropertySpecError as err:
        log.error("Cannot start without a valid property spec: %s", err)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
