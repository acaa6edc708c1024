import json
import os
from pathlib import Path

from aws_cdk import (
    CfnOutput,
    CfnParameter,
    Duration,
    RemovalPolicy,
    Stack,
    aws_cloudwatch as cloudwatch,
    aws_events as events,
    aws_events_targets as events_targets,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
    aws_ssm as ssm,
)
from constructs import Construct

from stacks.onboarding_catalog import (
    EMAIL_PARAMETER_PREFIX,
    Catalog,
    default_catalog,
)

LAMBDA_DIR = Path(__file__).resolve().parents[1] / "lambda"

DEFAULT_SECRET_NAME = "OTPSecret"
DEFAULT_EVENT_NAMES = ("CreateUser",)


def _event_names_from_env() -> list[str]:
    raw = (os.getenv("ONBOARDING_EVENT_NAMES") or "").strip()
    if not raw:
        return list(DEFAULT_EVENT_NAMES)
    names: list[str] = []
    for part in raw.split(","):
        v = part.strip()
        if v and v not in names:
            names.append(v)
    return names or list(DEFAULT_EVENT_NAMES)


class UserOnboardingStack(Stack):
    """
    IAM groups/users with read-only policies, a generated one-time password,
    per-user email parameters, and a function that logs each IAM CreateUser
    call picked up from CloudTrail.

    Deploy in us-east-1: IAM CloudTrail events only reach EventBridge there.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        catalog: Catalog | None = None,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        stateful_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )
        schema_version = "2026-10-01"

        catalog = (
            catalog
            or default_catalog(os.getenv("ONBOARDING_EMAIL_DOMAIN", "example.com"))
        ).validate()
        event_names = _event_names_from_env()

        secret_name = CfnParameter(
            self,
            "SecretName",
            type="String",
            default=(os.getenv("OTP_SECRET_NAME") or DEFAULT_SECRET_NAME).strip(),
            description="Name of the secret in Secrets Manager to store the one-time password.",
        )

        otp_secret = secretsmanager.Secret(
            self,
            "OTPSecret",
            secret_name=secret_name.value_as_string,
            generate_secret_string=secretsmanager.SecretStringGenerator(
                secret_string_template=json.dumps({"password": ""}),
                generate_string_key="password",
                password_length=16,
                exclude_characters='"@/\\',
            ),
            removal_policy=stateful_removal_policy,
        )

        groups: dict[str, iam.Group] = {}
        for group_def in catalog.groups:
            group = iam.Group(self, group_def.construct_id)
            policy_def = group_def.policy
            iam.Policy(
                self,
                f"{policy_def.name}Policy",
                policy_name=policy_def.name,
                groups=[group],
                statements=[
                    iam.PolicyStatement(
                        effect=iam.Effect.ALLOW,
                        actions=list(policy_def.actions),
                        resources=list(policy_def.resources),
                    )
                ],
            )
            groups[group_def.construct_id] = group

        email_parameters: dict[str, ssm.CfnParameter] = {}
        for user_def in catalog.users:
            email_parameter = ssm.CfnParameter(
                self,
                f"{user_def.output_id}EmailParameter",
                name=user_def.email_parameter_name,
                description=f"Email address of IAM user {user_def.user_name}.",
                type="String",
                value=user_def.email,
            )
            email_parameter.apply_removal_policy(stateful_removal_policy)
            email_parameters[user_def.user_name] = email_parameter

            # Initial console password is resolved from the secret at deploy time.
            iam.User(
                self,
                user_def.output_id,
                user_name=user_def.user_name,
                groups=[groups[user_def.group]],
                password=otp_secret.secret_value_from_json("password"),
                password_reset_required=True,
            )

        notification_role = iam.Role(
            self,
            "NotificationFunctionRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ],
            description="Execution role for the user-creation notification function.",
        )
        notification_role.add_to_policy(
            iam.PolicyStatement(
                actions=["ssm:GetParameter"],
                resources=[
                    self.format_arn(
                        service="ssm",
                        resource="parameter",
                        resource_name=f"{EMAIL_PARAMETER_PREFIX.strip('/')}/*",
                    )
                ],
            )
        )
        otp_secret.grant_read(notification_role)

        notification_fn = _lambda.Function(
            self,
            "LogUserCreationFunction",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="log_user_creation.handler",
            code=_lambda.Code.from_asset(str(LAMBDA_DIR)),
            timeout=Duration.seconds(10),
            role=notification_role,
            description="Logs the email and one-time password of newly created IAM users.",
            environment={
                "OTP_SECRET_NAME": secret_name.value_as_string,
                "EMAIL_PARAMETER_PREFIX": EMAIL_PARAMETER_PREFIX,
                "SCHEMA_VERSION": schema_version,
            },
        )

        # Create the log group explicitly so the metric filter can attach during deploy.
        log_group = logs.LogGroup(
            self,
            "LogUserCreationLogGroup",
            log_group_name=f"/aws/lambda/{notification_fn.function_name}",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )

        error_filter = logs.MetricFilter(
            self,
            "LogUserCreationErrorMetricFilter",
            log_group=log_group,
            metric_namespace="UserOnboarding",
            metric_name="NotificationErrors",
            filter_pattern=logs.FilterPattern.string_value("$.outcome", "=", "error"),
            metric_value="1",
        )

        cloudwatch.Alarm(
            self,
            "LogUserCreationErrorsAlarm",
            metric=error_filter.metric(statistic="Sum", period=Duration.minutes(5)),
            threshold=1,
            evaluation_periods=1,
            datapoints_to_alarm=1,
            treat_missing_data=cloudwatch.TreatMissingData.NOT_BREACHING,
        )

        create_user_rule = events.Rule(
            self,
            "CreateUserEventRule",
            description="Invoke the notification function when an IAM user is created.",
            event_pattern=events.EventPattern(
                source=["aws.iam"],
                detail_type=["AWS API Call via CloudTrail"],
                detail={
                    "eventSource": ["iam.amazonaws.com"],
                    "eventName": event_names,
                },
            ),
            targets=[events_targets.LambdaFunction(notification_fn)],
        )

        CfnOutput(
            self,
            "OTPSecretArn",
            value=otp_secret.secret_arn,
            description="ARN of the Secrets Manager Secret containing the one-time password.",
        )

        for user_def in catalog.users:
            CfnOutput(
                self,
                f"{user_def.output_id}Email",
                value=user_def.email,
                description=(
                    f"Email of {user_def.user_name} stored in Parameter Store "
                    f"at {email_parameters[user_def.user_name].name}."
                ),
            )

        CfnOutput(
            self,
            "NotificationFunctionName",
            value=notification_fn.function_name,
        )

        CfnOutput(
            self,
            "CreateUserRuleName",
            value=create_user_rule.rule_name,
        )
