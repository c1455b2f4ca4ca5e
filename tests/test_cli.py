import pytest

from zevm.__main__ import _main, load_config
from zevm.config import ConfigSource
from zevm.outcomes import HaltReason

# PUSH0 SLOAD PUSH1 6 JUMPI STOP JUMPDEST STOP
branching = "5f54600657005b00"


def test_load_config():
    config, hexcode = load_config([branching, "--gas", "1000", "--width", "1"])

    assert hexcode == branching
    assert config.gas == 1000
    assert config.value_with_source("width") == (1, ConfigSource.command_line)


def test_load_config_from_file(tmp_path):
    config_file = tmp_path / "zevm.toml"
    config_file.write_text("[global]\ndepth = 9\nstack-limit = 3\n")

    config, _ = load_config(["00", "--root", str(tmp_path), "--stack-limit", "4"])

    assert config.value_with_source("depth") == (9, ConfigSource.config_file)
    # the command line wins over the config file
    assert config.stack_limit == 4


def test_load_config_missing_file():
    with pytest.raises(SystemExit) as exc_info:
        load_config(["00", "--config", "/nonexistent/zevm.toml"])
    assert exc_info.value.code == 2


def test_main_explores(capsys):
    result = _main([branching, "--gas", "1000"])

    assert result.exitcode == 0
    assert result.halts == {HaltReason.STOP: 2}
    assert "Explored 2 paths" in capsys.readouterr().out


def test_main_symbolic_gas():
    result = _main([branching])

    assert result.exitcode == 0
    assert result.halts[HaltReason.OUT_OF_GAS] == 5
    assert result.halts[HaltReason.STOP] == 2


def test_main_print_states(capsys):
    result = _main(["00", "--print-states"])

    assert result.exitcode == 0
    assert "Storage:" in capsys.readouterr().out


@pytest.mark.parametrize("args", [[], ["zz"], ["600"]])
def test_main_invalid_bytecode(args):
    assert _main(args).exitcode == 2


def test_main_runs_repeatedly():
    # the status line can be started and stopped once per run
    for _ in range(3):
        result = _main(["600060005700", "--gas", "100"])
        assert result.exitcode == 0
        assert result.halts == {HaltReason.STOP: 1}
