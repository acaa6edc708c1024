import json
import os
import time
from datetime import datetime, timezone
from typing import Any

import boto3
from botocore.exceptions import ClientError

OTP_SECRET_NAME = os.environ.get("OTP_SECRET_NAME", "OTPSecret")
EMAIL_PARAMETER_PREFIX = os.environ.get("EMAIL_PARAMETER_PREFIX", "/user").rstrip("/")
SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-01")

EMAIL_NOT_FOUND = "Email not found"

_ssm_client = None
_secrets_client = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _ssm():
    global _ssm_client
    if _ssm_client is None:
        _ssm_client = boto3.client("ssm", region_name=os.environ.get("AWS_REGION"))
    return _ssm_client


def _secrets():
    global _secrets_client
    if _secrets_client is None:
        _secrets_client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION"))
    return _secrets_client


def _email_parameter_name(user_name: str) -> str:
    return f"{EMAIL_PARAMETER_PREFIX}/{user_name}/email"


def _lookup_email(user_name: str) -> str | None:
    try:
        out = _ssm().get_parameter(Name=_email_parameter_name(user_name))
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ParameterNotFound":
            return None
        raise
    return out["Parameter"]["Value"]


def _lookup_otp() -> str:
    out = _secrets().get_secret_value(SecretId=OTP_SECRET_NAME)
    return json.loads(out["SecretString"])["password"]


def handler(event: dict[str, Any], _context: Any) -> dict[str, Any]:
    start = time.time()
    wide_event: dict[str, Any] = {
        "event": "user_onboarding_log_user_creation",
        "schema_version": SCHEMA_VERSION,
        "ts": _now_iso(),
        "event_id": event.get("id", "") if isinstance(event, dict) else "",
    }

    try:
        user_name = event["detail"]["requestParameters"]["userName"]
        wide_event["user_name"] = user_name

        email = _lookup_email(user_name)
        wide_event["email_found"] = email is not None
        if email is None:
            email = EMAIL_NOT_FOUND

        otp = _lookup_otp()

        print(f"User Created: {user_name}, Email: {email}, OTP: {otp}")
        wide_event["outcome"] = "success"
        return {
            "statusCode": 200,
            "body": json.dumps("User creation logged successfully."),
        }
    except Exception as exc:
        wide_event["outcome"] = "error"
        wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}
        raise
    finally:
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        # The OTP only goes to the human-readable line above.
        print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True))
