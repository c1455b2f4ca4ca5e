import argparse
import os
import sys
from dataclasses import MISSING, Field, dataclass, fields
from dataclasses import field as dataclass_field
from typing import Any

import toml

from .logs import warn

CONFIG_FILE_NAME = "zevm.toml"

# metadata key of the fields that are not options
internal = "internal"


class ConfigSource:
    """Names of the layers a Config is assembled from, lowest first."""

    # only None values, used as a blank layer in tests
    void = "void"

    default = "default"

    # zevm.toml in the project root, or the file given by --config
    config_file = "config-file"

    command_line = "command-line"


# groups
debugging, solver, exploration = (
    "Debugging options",
    "Solver options",
    "Exploration options",
)


def arg(
    help: str,
    global_default: Any,
    metavar: str | None = None,
    group: str | None = None,
    short: str | None = None,
    countable: bool = False,
    global_default_str: str | None = None,
):
    """
    Declares a Config option.

    The dataclass default is always None, meaning "not set in this layer";
    `global_default` is only used by the bottom layer (see `default_config()`).
    A callable `global_default` is evaluated once, when that layer is built.
    """

    metadata = dict(
        help=help,
        global_default=global_default,
        metavar=metavar,
        group=group,
        short=short,
        countable=countable,
        global_default_str=global_default_str,
    )
    return dataclass_field(default=None, metadata=metadata)


@dataclass(frozen=True)
class Config:
    """Layered zevm options.

    Each layer holds only the values set by its source and defers to `_parent` for the rest,
    so an option resolves to the highest layer that sets it.

    Get the bottom layer with `default_config()`, and stack layers on it with `with_overrides()`.
    """

    _parent: "Config" = dataclass_field(repr=False, metadata={internal: True})

    _source: str = dataclass_field(metadata={internal: True})

    ### General options

    root: str = arg(
        help="project root directory",
        metavar="ROOT",
        global_default=os.getcwd,
        global_default_str="current working directory",
    )

    config: str = arg(
        help="path to the config file",
        metavar="FILE",
        global_default=lambda: os.path.join(os.getcwd(), CONFIG_FILE_NAME),
        global_default_str=f"ROOT/{CONFIG_FILE_NAME}",
    )

    gas: int = arg(
        help="initial gas; a fresh symbolic value is used if not given",
        global_default=None,
        metavar="GAS",
    )

    stack_limit: int = arg(
        help="maximum stack depth",
        global_default=1024,
        metavar="DEPTH",
    )

    version: bool = arg(
        help="print the version number",
        global_default=False,
    )

    ### Exploration options

    width: int = arg(
        help="stop after this many completed paths; 0 means unlimited",
        global_default=0,
        metavar="MAX_WIDTH",
        group=exploration,
    )

    depth: int = arg(
        help="drop paths longer than this many steps; 0 means unlimited",
        global_default=0,
        metavar="MAX_DEPTH",
        group=exploration,
    )

    ### Debugging options

    verbose: int = arg(
        help="increase verbosity levels: -v, -vv, -vvv, ...",
        global_default=0,
        group=debugging,
        short="v",
        countable=True,
    )

    debug: bool = arg(
        help="run in debug mode",
        global_default=False,
        group=debugging,
    )

    print_steps: bool = arg(
        help="print the program, then every execution state before it is stepped",
        global_default=False,
        group=debugging,
    )

    print_states: bool = arg(
        help="print the full state of every halted execution",
        global_default=False,
        group=debugging,
    )

    ### Solver options

    solver_timeout_branching: int = arg(
        help="timeout (in milliseconds) of each feasibility query; 0 means no timeout",
        global_default=0,
        metavar="TIMEOUT",
        group=solver,
    )

    solver_max_memory: int = arg(
        help="memory limit (in megabytes) of each solver; 0 means no limit",
        global_default=0,
        metavar="SIZE",
        group=solver,
    )

    ### Methods

    def __getattribute__(self, name):
        value = object.__getattribute__(self, name)
        if value is not None:
            return value

        # unset in this layer, defer to the layer below
        parent = object.__getattribute__(self, "_parent")
        return value if parent is None else getattr(parent, name)

    def with_overrides(self, source: str, **overrides) -> "Config":
        """Returns a new layer on top of this one.

        `overrides` is typically vars(namespace) of an argparse result, or the
        dictionary parsed from a config file; None values leave an option unset.
        """

        try:
            return Config(_parent=self, _source=source, **overrides)
        except TypeError as e:
            # same message and exit code as argparse
            warn(f"error: unrecognized argument: {str(e).split()[-1]}")
            sys.exit(2)

    def value_with_source(self, name: str) -> tuple[Any, str]:
        layer = self
        while True:
            value = object.__getattribute__(layer, name)
            if value is not None or layer._parent is None:
                return (value, layer._source)
            layer = layer._parent

    def values(self):
        # the bottom layer reports every option, the others only what they set
        is_bottom = self._parent is None

        for field in options():
            value = object.__getattribute__(self, field.name)
            if is_bottom or value is not None:
                yield field.name, value

    def layers(self) -> list["Config"]:
        """Returns the layers from the bottom (defaults) to this one."""
        layer, result = self, []
        while layer is not None:
            result.append(layer)
            layer = layer._parent
        return result[::-1]

    def values_by_layer(self) -> dict[str, dict[str, Any]]:
        return {layer._source: dict(layer.values()) for layer in self.layers()}

    def formatted_layers(self) -> str:
        lines = []
        for source, values in self.values_by_layer().items():
            lines.append(f"{source}:")
            lines.extend(f"  {name}: {value}" for name, value in values.items())
        return "\n".join(lines)


def options() -> list[Field]:
    """Returns the Config fields that are user-facing options."""
    return [f for f in fields(Config) if not f.metadata.get(internal)]


def resolve_config_files(args: list[str], include_missing: bool = False) -> list[str]:
    """
    Returns the config files to load for the given command line.

    An explicit --config is returned as is, even if missing, so that the caller can report it.
    Otherwise zevm.toml in --root (default: cwd) is returned if it exists, or if include_missing.
    """

    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument("--root", metavar="DIRECTORY", default=os.getcwd())
    pre_parser.add_argument("--config", metavar="FILE")

    # beware: errors cause a system exit
    known, _ = pre_parser.parse_known_args(args)

    if known.config:
        return [known.config]

    path = os.path.join(known.root, CONFIG_FILE_NAME)
    return [path] if include_missing or os.path.exists(path) else []


class TomlParser:
    """
    Reads zevm.toml. The file holds a single `[global]` table of options,
    spelled like the long command line flags (e.g. `stack-limit = 16`).
    """

    def parse_file(self, toml_file_path: str) -> dict:
        with open(toml_file_path) as f:
            return self.parse_str(f.read(), source=toml_file_path)

    def parse_str(self, file_contents: str, source: str = CONFIG_FILE_NAME) -> dict:
        try:
            parsed = toml.loads(file_contents)
        except toml.TomlDecodeError as e:
            warn(f"error: invalid toml in {source}: {e}")
            sys.exit(2)

        return self.parse_dict(parsed, source=source)

    def parse_dict(self, parsed: dict, source: str = CONFIG_FILE_NAME) -> dict:
        if list(parsed) != ["global"]:
            sections = ", ".join(parsed) or "none"
            warn(f"error: expected a single `[global]` section in {source}, got: {sections}")
            sys.exit(2)

        data = {key.replace("-", "_"): value for key, value in parsed["global"].items()}
        self.check_types(data, source)
        return data

    def check_types(self, data: dict, source: str) -> None:
        # unknown keys are reported by Config.with_overrides()
        types = {field.name: field.type for field in options()}

        for key, value in data.items():
            expected = types.get(key)
            if expected is None:
                continue

            # bool is a subclass of int, but `depth = true` is a mistake
            if isinstance(value, expected) and (expected is bool or not isinstance(value, bool)):
                continue

            warn(f"error: {key} in {source} must be {expected.__name__}, got {value!r}")
            sys.exit(2)


def _create_default_config() -> "Config":
    values = {}

    for field in options():
        default = field.metadata.get("global_default", MISSING)
        if default is MISSING:
            continue

        values[field.name] = default() if callable(default) else default

    return Config(_parent=None, _source=ConfigSource.default, **values)


def _add_option(group, field: Field) -> None:
    names = [f"--{field.name.replace('_', '-')}"]
    if short := field.metadata.get("short"):
        names.append(f"-{short}")

    arg_help = field.metadata.get("help", "")

    # no argparse defaults: an absent flag must leave the option unset in its layer
    if field.type is bool:
        group.add_argument(*names, help=arg_help, action="store_true", default=None)
        return

    if field.metadata.get("countable"):
        group.add_argument(*names, help=arg_help, action="count")
        return

    default = field.metadata.get("global_default")
    if default is not None:
        default_str = field.metadata.get("global_default_str") or repr(default)
        arg_help += f" (default: {default_str})"

    group.add_argument(
        *names,
        help=arg_help,
        metavar=field.metadata.get("metavar"),
        type=field.type,
    )


def _create_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zevm",
        description="Enumerate every feasible path of a bytecode program.",
    )

    parser.add_argument(
        "hexcode", metavar="HEXCODE", nargs="?", help="bytecode to explore"
    )

    groups = {None: parser}

    for field in options():
        name = field.metadata.get("group")
        if name not in groups:
            groups[name] = parser.add_argument_group(name)

        _add_option(groups[name], field)

    return parser


# public singleton accessors
def default_config() -> "Config":
    return _default_config


def arg_parser() -> argparse.ArgumentParser:
    return _arg_parser


def toml_parser() -> TomlParser:
    return _toml_parser


# init module-level singletons
_arg_parser = _create_arg_parser()
_default_config = _create_default_config()
_toml_parser = TomlParser()
