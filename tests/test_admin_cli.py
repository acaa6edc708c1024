from __future__ import annotations

import json

from typer.testing import CliRunner

import onboarding_cli.apps.admin_cli as admin_cli
from onboarding_cli import __version__
from onboarding_cli.cli_shared import OpError, UsageError


runner = CliRunner()


def _record(calls: list, code: int = 0):
    def fake(args, g):
        calls.append((vars(args), g))
        return code

    return fake


def test_version():
    result = runner.invoke(admin_cli.admin_app, ["--version"])
    assert result.exit_code == 0
    assert f"onboarding-admin {__version__}" in result.stdout


def test_email_get_routes_with_default_stack(monkeypatch):
    monkeypatch.delenv("STACK", raising=False)
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_email_get", _record(calls))

    result = runner.invoke(admin_cli.admin_app, ["email", "get", "s3-user"])

    assert result.exit_code == 0
    ((args, g),) = calls
    assert args == {"user_name": "s3-user"}
    assert g.stack == "UserOnboardingStack"
    assert g.pretty is True


def test_global_options_reach_commands(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-west-2")
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_email_put", _record(calls))

    result = runner.invoke(
        admin_cli.admin_app,
        [
            "--stack",
            "OtherStack",
            "--region",
            "us-east-1",
            "--plain-json",
            "email",
            "put",
            "s3-user",
            "s3@example.com",
            "--overwrite",
        ],
    )

    assert result.exit_code == 0
    ((args, g),) = calls
    assert args == {"user_name": "s3-user", "email": "s3@example.com", "overwrite": True}
    assert g.stack == "OtherStack"
    assert g.pretty is False
    assert admin_cli.os.environ["AWS_REGION"] == "us-east-1"


def test_stack_env_is_used_when_flag_missing(monkeypatch):
    monkeypatch.setenv("STACK", "EnvStack")
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_stack_output", _record(calls))

    result = runner.invoke(admin_cli.admin_app, ["stack-output", "OTPSecretArn"])

    assert result.exit_code == 0
    ((args, g),) = calls
    assert args == {"output_key": "OTPSecretArn"}
    assert g.stack == "EnvStack"


def test_usage_error_exits_2(monkeypatch):
    def fake(args, g):
        raise UsageError("invalid IAM user name: 'bad name'")

    monkeypatch.setattr(admin_cli, "cmd_email_get", fake)
    result = runner.invoke(admin_cli.admin_app, ["email", "get", "bad name"])
    assert result.exit_code == 2


def test_op_error_exits_1(monkeypatch):
    def fake(args, g):
        raise OpError("stack not found: UserOnboardingStack")

    monkeypatch.setattr(admin_cli, "cmd_otp_show", fake)
    result = runner.invoke(admin_cli.admin_app, ["otp", "show"])
    assert result.exit_code == 1


def test_nonzero_command_code_is_exit_code(monkeypatch):
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_invoke", _record(calls, code=1))
    result = runner.invoke(admin_cli.admin_app, ["invoke", "s3-user", "--function-name", "fn"])
    assert result.exit_code == 1
    assert calls[0][0] == {"user_name": "s3-user", "function_name": "fn", "event_name": "CreateUser"}


def test_sample_event_end_to_end():
    result = runner.invoke(admin_cli.admin_app, ["--plain-json", "sample-event", "ec2-user"])
    assert result.exit_code == 0
    event = json.loads(result.stdout)
    assert event["detail"]["requestParameters"]["userName"] == "ec2-user"
    assert event["detail"]["eventName"] == "CreateUser"


def test_main_returns_exit_codes(monkeypatch):
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_email_get", _record(calls))
    assert admin_cli.main(["email", "get", "s3-user"]) == 0
    assert admin_cli.main(["email", "get"]) == 2
    assert admin_cli.main(["--quiet", "email", "get"]) == 2


def test_invoke_passes_event_name(monkeypatch):
    calls: list = []
    monkeypatch.setattr(admin_cli, "cmd_invoke", _record(calls))
    result = runner.invoke(admin_cli.admin_app, ["invoke", "s3-user", "--event-name", "CreateLoginProfile"])
    assert result.exit_code == 0
    assert calls[0][0]["event_name"] == "CreateLoginProfile"


def _raise_usage(args, g):
    raise UsageError("invalid IAM user name: 'bad name'")


def test_usage_error_prints_help(monkeypatch, capsys):
    monkeypatch.setattr(admin_cli, "cmd_email_get", _raise_usage)
    assert admin_cli.main(["email", "get", "bad name"]) == 2
    captured = capsys.readouterr()
    assert "invalid IAM user name" in captured.err
    assert "Usage" in captured.out + captured.err


def test_quiet_suppresses_help(monkeypatch, capsys):
    monkeypatch.setattr(admin_cli, "cmd_email_get", _raise_usage)
    assert admin_cli.main(["--quiet", "email", "get", "bad name"]) == 2
    captured = capsys.readouterr()
    assert "invalid IAM user name" in captured.err
    assert "Usage" not in captured.out + captured.err
