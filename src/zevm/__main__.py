# SPDX-License-Identifier: AGPL-3.0

import os
import sys
from collections import Counter
from dataclasses import dataclass
from importlib import metadata

from z3 import set_option

from zevm.config import (
    Config,
    ConfigSource,
    arg_parser,
    default_config,
    resolve_config_files,
    toml_parser,
)
from zevm.exceptions import SolverUnknown
from zevm.logs import error, info, set_verbosity
from zevm.program import Program
from zevm.sevm import Builder
from zevm.ui import ui


@dataclass
class MainResult:
    exitcode: int
    # halt reason -> number of paths
    halts: Counter = None


def load_config(_args) -> tuple[Config, str | None]:
    config = default_config()

    # parse CLI args first, so that can get `--help` out of the way and resolve `--debug`
    # but don't apply the CLI overrides yet
    cli_overrides = vars(arg_parser().parse_args(_args))

    # the program is not a config option
    hexcode = cli_overrides.pop("hexcode")

    # then for each config file, parse it and override the args
    config_files = resolve_config_files(_args)
    for config_file in config_files:
        if not os.path.exists(config_file):
            error(f"Config file not found: {config_file}")
            sys.exit(2)

        overrides = toml_parser().parse_file(config_file)
        config = config.with_overrides(ConfigSource.config_file, **overrides)

    # finally apply the CLI overrides
    config = config.with_overrides(ConfigSource.command_line, **cli_overrides)

    return config, hexcode


def _main(_args=None) -> MainResult:
    #
    # z3 global options
    #

    set_option(max_width=240)
    set_option(max_lines=10**8)

    #
    # command line arguments
    #

    args, hexcode = load_config(_args)

    if args.version:
        print(f"zevm {metadata.version('zevm')}")
        return MainResult(0)

    set_verbosity(args.verbose, args.debug)

    if args.verbose >= 1:
        info(f"Configuration:\n{args.formatted_layers()}")

    if hexcode is None:
        error("no bytecode given")
        return MainResult(2)

    try:
        program = Program.from_hexcode(hexcode)
    except ValueError as e:
        error(f"invalid bytecode: {e}")
        return MainResult(2)

    if args.print_steps:
        print(program)

    evm = Builder(program, args).build()
    halts = Counter()

    ui.start_status()
    try:
        for idx, ex in enumerate(evm.explore()):
            halts[ex.halted] += 1
            ui.update_status(f"Explored {idx + 1} paths")
            ui.print_halted(idx, ex, args.print_states)
    except SolverUnknown as e:
        error(f"exploration aborted: {e}")
        return MainResult(1, halts)
    finally:
        ui.stop_status()

    ui.print_summary(halts)

    return MainResult(0, halts)


def main() -> int:
    exitcode = _main().exitcode
    return exitcode


# entrypoint for `python -m zevm`
if __name__ == "__main__":
    sys.exit(main())
