#!/usr/bin/env python3
import os

import aws_cdk as cdk

from stacks.user_onboarding_stack import UserOnboardingStack

app = cdk.App()

stack_name = os.getenv("CDK_STACK_NAME", "UserOnboardingStack")

# IAM CloudTrail events are only delivered to EventBridge in us-east-1.
UserOnboardingStack(
    app,
    stack_name,
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),
    ),
)

app.synth()
