from __future__ import annotations

import argparse
import json
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from botocore.exceptions import ClientError

from stacks.onboarding_catalog import (
    EMAIL_NOT_FOUND,
    email_parameter_name,
    is_valid_user_name,
)

from .cli_shared import (
    GlobalOpts,
    OpError,
    UsageError,
    _account_session,
    _cf_outputs,
    _env_or_none,
    _print_json,
    _require_str,
    _stack_output_value,
)

DEFAULT_EVENT_REGION = "us-east-1"


@dataclass
class AdminContext:
    session: Any
    stack: str
    _outputs: dict[str, str] = field(default_factory=dict)

    def outputs(self) -> dict[str, str]:
        if self._outputs:
            return self._outputs
        self._outputs = {
            str(o.get("OutputKey", "")).strip(): str(o.get("OutputValue", "")).strip()
            for o in _cf_outputs(self.session, stack=self.stack)
        }
        return self._outputs

    def output(self, key: str) -> str | None:
        return self.outputs().get(key)

    def require_output(self, key: str) -> str:
        v = self.output(key)
        if v is None:
            raise OpError(f"missing CloudFormation output {key!r} on stack {self.stack!r}")
        return v

    def resolve_secret_id(self, override: str | None) -> str:
        if override:
            return override.strip()
        return self.require_output("OTPSecretArn")

    def resolve_function_name(self, override: str | None) -> str:
        if override:
            return override.strip()
        return self.require_output("NotificationFunctionName")


def build_admin_context(g: GlobalOpts) -> AdminContext:
    return AdminContext(session=_account_session(), stack=g.stack)


def _require_user_name(raw: str | None) -> str:
    user_name = _require_str(raw, "user name", hint="pass USER")
    if not is_valid_user_name(user_name):
        raise UsageError(f"invalid IAM user name: {user_name!r}")
    return user_name


def _create_user_event(
    user_name: str,
    *,
    event_name: str = "CreateUser",
    region: str = DEFAULT_EVENT_REGION,
) -> dict[str, Any]:
    now = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
    return {
        "version": "0",
        "id": str(uuid.uuid4()),
        "detail-type": "AWS API Call via CloudTrail",
        "source": "aws.iam",
        "time": now,
        "region": region,
        "resources": [],
        "detail": {
            "eventVersion": "1.08",
            "eventTime": now,
            "eventSource": "iam.amazonaws.com",
            "eventName": event_name,
            "awsRegion": region,
            "requestParameters": {"userName": user_name},
        },
    }


def _ssm_get_email(session: Any, *, name: str) -> str | None:
    ssm = session.client("ssm")
    try:
        resp = ssm.get_parameter(Name=name)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
            return None
        raise OpError(f"ssm get-parameter failed for {name!r}: {e}") from e
    return str(resp.get("Parameter", {}).get("Value", "")).strip()


def _ssm_put_email(session: Any, *, name: str, value: str, overwrite: bool) -> None:
    ssm = session.client("ssm")
    try:
        ssm.put_parameter(
            Name=name,
            Value=value,
            Type="String",
            Overwrite=overwrite,
        )
    except Exception as e:
        raise OpError(f"ssm put-parameter failed for {name!r}: {e}") from e


def cmd_stack_output(args: argparse.Namespace, g: GlobalOpts) -> int:
    ctx = build_admin_context(g)
    key = str(getattr(args, "output_key", "") or "").strip()
    if not key:
        outputs = _cf_outputs(ctx.session, stack=g.stack)
        _print_json(outputs, pretty=g.pretty)
        return 0
    v = _stack_output_value(ctx.session, stack=g.stack, key=key)
    if v is None:
        raise OpError(f"output key not found: {key}")
    sys.stdout.write(v + "\n")
    return 0


def cmd_email_get(args: argparse.Namespace, g: GlobalOpts) -> int:
    user_name = _require_user_name(args.user_name)
    ctx = build_admin_context(g)
    name = email_parameter_name(user_name)
    email = _ssm_get_email(ctx.session, name=name)
    _print_json(
        {
            "userName": user_name,
            "parameterName": name,
            "email": EMAIL_NOT_FOUND if email is None else email,
            "found": email is not None,
        },
        pretty=g.pretty,
    )
    return 0


def cmd_email_put(args: argparse.Namespace, g: GlobalOpts) -> int:
    user_name = _require_user_name(args.user_name)
    email = _require_str(args.email, "email", hint="pass EMAIL")
    if "@" not in email or email.startswith("@") or email.endswith("@"):
        raise UsageError(f"invalid email address: {email!r}")
    ctx = build_admin_context(g)
    name = email_parameter_name(user_name)
    _ssm_put_email(ctx.session, name=name, value=email, overwrite=bool(args.overwrite))
    _print_json(
        {"userName": user_name, "parameterName": name, "overwrote": bool(args.overwrite)},
        pretty=g.pretty,
    )
    return 0


def cmd_otp_show(args: argparse.Namespace, g: GlobalOpts) -> int:
    ctx = build_admin_context(g)
    secret_id = ctx.resolve_secret_id(getattr(args, "secret_id", None))
    sm = ctx.session.client("secretsmanager")
    try:
        desc = sm.describe_secret(SecretId=secret_id)
    except Exception as e:
        raise OpError(f"secretsmanager describe-secret failed for {secret_id!r}: {e}") from e

    last_changed = desc.get("LastChangedDate")
    out: dict[str, Any] = {
        "arn": desc.get("ARN", secret_id),
        "name": desc.get("Name", ""),
        "lastChangedDate": last_changed.isoformat() if hasattr(last_changed, "isoformat") else last_changed,
    }
    if bool(getattr(args, "reveal", False)):
        try:
            resp = sm.get_secret_value(SecretId=secret_id)
            out["password"] = json.loads(resp["SecretString"])["password"]
        except Exception as e:
            raise OpError(f"secretsmanager get-secret-value failed for {secret_id!r}: {e}") from e
    _print_json(out, pretty=g.pretty)
    return 0


def cmd_sample_event(args: argparse.Namespace, g: GlobalOpts) -> int:
    user_name = _require_user_name(args.user_name)
    event_name = (getattr(args, "event_name", None) or "CreateUser").strip()
    region = _env_or_none("AWS_REGION", "AWS_DEFAULT_REGION") or DEFAULT_EVENT_REGION
    _print_json(
        _create_user_event(user_name, event_name=event_name, region=region),
        pretty=g.pretty,
    )
    return 0


def cmd_invoke(args: argparse.Namespace, g: GlobalOpts) -> int:
    user_name = _require_user_name(args.user_name)
    ctx = build_admin_context(g)
    function_name = ctx.resolve_function_name(getattr(args, "function_name", None))
    event_name = (getattr(args, "event_name", None) or "CreateUser").strip()
    region = str(getattr(ctx.session, "region_name", None) or DEFAULT_EVENT_REGION)
    event = _create_user_event(user_name, event_name=event_name, region=region)
    lam = ctx.session.client("lambda")
    try:
        resp = lam.invoke(
            FunctionName=function_name,
            InvocationType="RequestResponse",
            Payload=json.dumps(event).encode("utf-8"),
        )
    except Exception as e:
        raise OpError(f"lambda invoke failed for {function_name!r}: {e}") from e

    raw = resp.get("Payload")
    body = raw.read() if hasattr(raw, "read") else (raw or b"")
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    try:
        payload = json.loads(body) if body else None
    except json.JSONDecodeError:
        payload = body

    function_error = resp.get("FunctionError") or ""
    _print_json(
        {
            "functionName": function_name,
            "userName": user_name,
            "statusCode": resp.get("StatusCode"),
            "functionError": function_error,
            "payload": payload,
        },
        pretty=g.pretty,
    )
    return 1 if function_error else 0
