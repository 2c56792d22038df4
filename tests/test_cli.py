from __future__ import annotations

from click.testing import CliRunner

from broadcast_serial_bridge.cli import main


def test_commands_lists_tables(tmp_path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["-c", str(tmp_path / "none.toml"), "commands"])
    assert result.exit_code == 0, result.output
    assert "flexicart:" in result.output
    assert "move_to_slot" in result.output
    assert "cue_up_with_data" in result.output
    assert "record" not in result.output


def test_commands_single_protocol(tmp_path) -> None:
    result = CliRunner().invoke(main, ["-c", str(tmp_path / "none.toml"), "commands", "-P", "sony9pin"])
    assert result.exit_code == 0
    assert "flexicart:" not in result.output
    assert "jog_forward_still" in result.output


def test_send_requires_target(tmp_path) -> None:
    result = CliRunner().invoke(main, ["-c", str(tmp_path / "none.toml"), "send", "stop"])
    assert result.exit_code != 0
    assert "--channel" in result.output


def test_send_unknown_channel(tmp_path) -> None:
    result = CliRunner().invoke(main, ["-c", str(tmp_path / "none.toml"), "send", "stop", "-C", "cart-1"])
    assert result.exit_code != 0
    assert "cart-1" in result.output


def test_send_missing_port_reports_error(tmp_path) -> None:
    result = CliRunner().invoke(
        main, ["-c", str(tmp_path / "none.toml"), "send", "move_to_slot", "-p", str(tmp_path / "ttyRP9"), "-s", "7"])
    assert result.exit_code != 0
    assert "PortUnavailable" in result.output


def test_send_rejects_bad_param(tmp_path) -> None:
    result = CliRunner().invoke(
        main, ["-c", str(tmp_path / "none.toml"), "send", "stop", "-p", "/dev/null", "-x", "novalue"])
    assert result.exit_code != 0
    assert "key=value" in result.output
