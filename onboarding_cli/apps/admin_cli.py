from __future__ import annotations

import argparse
import contextlib
import io
import os
import sys
from typing import Any

import click
import typer
from dotenv import load_dotenv
from rich.console import Console

from .. import __version__
from ..admin_commands import (
    cmd_email_get,
    cmd_email_put,
    cmd_invoke,
    cmd_otp_show,
    cmd_sample_event,
    cmd_stack_output,
)
from ..cli_shared import DEFAULT_STACK_NAME
from ..cli_shared import GlobalOpts
from ..cli_shared import OpError
from ..cli_shared import UsageError
from ..cli_shared import _eprint
from ..cli_shared import _env_or_none

_ERROR_CONSOLE = Console(stderr=True)

# Newer typer releases bundle their own click as typer._click; its exceptions
# and Context do not subclass the ones from the click package.
_TYPER_CLICK = getattr(typer, "_click", None)
_CLICK_EXCEPTIONS: tuple[type[Exception], ...] = (click.ClickException,)
_CLICK_USAGE_ERRORS: tuple[type[Exception], ...] = (click.UsageError,)
_CLICK_CONTEXTS: tuple[type, ...] = (click.Context, typer.Context)
if _TYPER_CLICK is not None:
    _CLICK_EXCEPTIONS += (_TYPER_CLICK.exceptions.ClickException,)
    _CLICK_USAGE_ERRORS += (_TYPER_CLICK.exceptions.UsageError,)
    if hasattr(_TYPER_CLICK, "Context"):
        _CLICK_CONTEXTS += (_TYPER_CLICK.Context,)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _bootstrap_env() -> None:
    # Discover and load .env without overriding already-exported values.
    load_dotenv()


def _root_help_text(*, root_app: typer.Typer, prog_name: str) -> str:
    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        try:
            root_app(args=["--help"], prog_name=prog_name, standalone_mode=False)
        except (typer.Exit, *_CLICK_EXCEPTIONS):
            pass
    return str(buf.getvalue() or "").strip()


def _render_usage_error_with_help(
    *,
    message: str,
    ctx: Any = None,
    fallback_help: str = "",
    quiet: bool = False,
) -> None:
    _rich_error(message)
    if quiet:
        return
    help_text = ""
    if isinstance(ctx, _CLICK_CONTEXTS):
        help_text = str(ctx.get_help() or "").strip()
    if not help_text:
        help_text = str(fallback_help or "").strip()
    if help_text:
        _eprint("")
        _eprint(help_text)


def _namespace(**kwargs: Any) -> argparse.Namespace:
    return argparse.Namespace(**kwargs)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"onboarding-admin {__version__}")
        raise typer.Exit(code=0)


def _apply_global_env(args: argparse.Namespace) -> GlobalOpts:
    if getattr(args, "profile", None):
        os.environ["AWS_PROFILE"] = str(args.profile).strip()
    if getattr(args, "region", None):
        os.environ["AWS_REGION"] = str(args.region).strip()
    # If the user didn't explicitly pass --stack, defer to env.
    stack = (getattr(args, "stack", None) or _env_or_none("STACK") or DEFAULT_STACK_NAME).strip()
    return GlobalOpts(
        stack=stack,
        pretty=not bool(getattr(args, "plain_json", False)),
        quiet=bool(getattr(args, "quiet", False)),
    )


admin_app = typer.Typer(
    name="onboarding-admin",
    help="Operate the IAM user onboarding stack.",
    no_args_is_help=True,
    add_completion=False,
)
email_app = typer.Typer(help="User email parameters (/user/<name>/email)", no_args_is_help=True)
otp_app = typer.Typer(help="Shared one-time password secret", no_args_is_help=True)
admin_app.add_typer(email_app, name="email")
admin_app.add_typer(otp_app, name="otp")


@admin_app.callback()
def app_callback_admin(
    ctx: typer.Context,
    profile: str | None = typer.Option(None, "--profile", help="AWS CLI profile name (sets AWS_PROFILE)"),
    region: str | None = typer.Option(None, "--region", help="AWS region (sets AWS_REGION)"),
    stack: str | None = typer.Option(
        None,
        "--stack",
        help=f"CloudFormation stack name (default: env STACK or {DEFAULT_STACK_NAME})",
    ),
    plain_json: bool = typer.Option(False, "--plain-json", help="Emit compact JSON output"),
    quiet: bool = typer.Option(False, "--quiet", help="Reduce stderr logging"),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    del version
    ns = _namespace(
        profile=profile,
        region=region,
        stack=stack,
        plain_json=plain_json,
        quiet=quiet,
    )
    ctx.obj = {"g": _apply_global_env(ns)}


def _ctx_global(ctx: typer.Context) -> GlobalOpts:
    if isinstance(ctx.obj, dict) and isinstance(ctx.obj.get("g"), GlobalOpts):
        return ctx.obj["g"]
    return _apply_global_env(_namespace())


def _invoke(ctx: typer.Context, func: Any, **kwargs: Any) -> None:
    g = _ctx_global(ctx)
    args = _namespace(**kwargs)
    try:
        code = int(func(args, g))
    except UsageError as e:
        _render_usage_error_with_help(message=str(e), ctx=ctx, quiet=g.quiet)
        raise typer.Exit(code=2)
    except OpError as e:
        _rich_error(str(e))
        raise typer.Exit(code=1)

    if code:
        raise typer.Exit(code=code)


@admin_app.command("stack-output", help="Print CloudFormation stack outputs or a single output value.")
def stack_output(
    ctx: typer.Context,
    output_key: str | None = typer.Argument(None, help="Optional CloudFormation output key"),
) -> None:
    _invoke(ctx, cmd_stack_output, output_key=output_key)


@email_app.command("get", help="Read a user's email parameter.")
def email_get(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
) -> None:
    _invoke(ctx, cmd_email_get, user_name=user_name)


@email_app.command("put", help="Write a user's email parameter.")
def email_put(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
    email: str = typer.Argument(..., help="Email address"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace an existing value"),
) -> None:
    _invoke(ctx, cmd_email_put, user_name=user_name, email=email, overwrite=overwrite)


@otp_app.command("show", help="Describe the one-time password secret.")
def otp_show(
    ctx: typer.Context,
    secret_id: str | None = typer.Option(None, "--secret-id", help="Override secret id (otherwise stack output OTPSecretArn)"),
    reveal: bool = typer.Option(False, "--reveal", help="Include the password value"),
) -> None:
    _invoke(ctx, cmd_otp_show, secret_id=secret_id, reveal=reveal)


@admin_app.command("sample-event", help="Print a CloudTrail CreateUser event the rule would match.")
def sample_event(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
    event_name: str = typer.Option("CreateUser", "--event-name", help="IAM API action name"),
) -> None:
    _invoke(ctx, cmd_sample_event, user_name=user_name, event_name=event_name)


@admin_app.command("invoke", help="Invoke the deployed notification function with a sample IAM event.")
def invoke(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
    function_name: str | None = typer.Option(
        None,
        "--function-name",
        help="Override function name (otherwise stack output NotificationFunctionName)",
    ),
    event_name: str = typer.Option("CreateUser", "--event-name", help="IAM API action name"),
) -> None:
    _invoke(
        ctx,
        cmd_invoke,
        user_name=user_name,
        function_name=function_name,
        event_name=event_name,
    )


def _run_cli(*, root_app: typer.Typer, prog_name: str, argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    quiet = "--quiet" in argv
    _bootstrap_env()
    try:
        result = root_app(args=argv, prog_name=prog_name, standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except _CLICK_EXCEPTIONS as e:
        if isinstance(e, _CLICK_USAGE_ERRORS):
            _render_usage_error_with_help(
                message=e.format_message(),
                ctx=getattr(e, "ctx", None),
                quiet=quiet,
            )
            return int(e.exit_code)
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _render_usage_error_with_help(
            message=str(e),
            fallback_help=_root_help_text(root_app=root_app, prog_name=prog_name),
            quiet=quiet,
        )
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


def main(argv: list[str] | None = None) -> int:
    return _run_cli(root_app=admin_app, prog_name="onboarding-admin", argv=argv)


if __name__ == "__main__":
    raise SystemExit(main())
