"""Groups, policies and users provisioned by the onboarding stack.

The catalog is plain data so both the CDK stack and the operator CLI can
agree on user names and the email parameter convention.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

EMAIL_PARAMETER_PREFIX = "/user"
EMAIL_NOT_FOUND = "Email not found"
_USER_NAME_RE = re.compile(r"^[\w+=,.@-]{1,64}$")


def email_parameter_name(user_name: str) -> str:
    return f"{EMAIL_PARAMETER_PREFIX}/{user_name}/email"


def is_valid_user_name(user_name: str) -> bool:
    return bool(_USER_NAME_RE.match(user_name or ""))


@dataclass(frozen=True)
class PolicyDef:
    name: str
    actions: tuple[str, ...]
    resources: tuple[str, ...] = ("*",)


@dataclass(frozen=True)
class GroupDef:
    construct_id: str
    policy: PolicyDef


@dataclass(frozen=True)
class UserDef:
    user_name: str
    group: str
    email: str
    # Prefix for construct ids and the "<output_id>Email" stack output.
    output_id: str

    @property
    def email_parameter_name(self) -> str:
        return email_parameter_name(self.user_name)


@dataclass(frozen=True)
class Catalog:
    groups: tuple[GroupDef, ...]
    users: tuple[UserDef, ...]

    def group(self, construct_id: str) -> GroupDef:
        for g in self.groups:
            if g.construct_id == construct_id:
                return g
        raise KeyError(construct_id)

    def validate(self) -> "Catalog":
        group_ids = {g.construct_id for g in self.groups}
        if len(group_ids) != len(self.groups):
            raise ValueError("group construct ids must be unique")

        seen: set[str] = set()
        for user in self.users:
            if not is_valid_user_name(user.user_name):
                raise ValueError(f"invalid IAM user name: {user.user_name!r}")
            if user.user_name in seen:
                raise ValueError(f"duplicate user name: {user.user_name}")
            seen.add(user.user_name)
            if user.group not in group_ids:
                raise ValueError(
                    f"user {user.user_name} references unknown group {user.group!r}"
                )
        return self


S3_READ_POLICY = PolicyDef(
    name="S3ReadAccess",
    actions=("s3:GetObject", "s3:ListBucket"),
)

EC2_READ_POLICY = PolicyDef(
    name="EC2ReadAccess",
    actions=("ec2:Describe*",),
)


def default_catalog(email_domain: str = "example.com") -> Catalog:
    domain = (email_domain or "").strip().lstrip("@") or "example.com"
    return Catalog(
        groups=(
            GroupDef(construct_id="S3UserGroup", policy=S3_READ_POLICY),
            GroupDef(construct_id="EC2UserGroup", policy=EC2_READ_POLICY),
        ),
        users=(
            UserDef(
                user_name="s3-user",
                group="S3UserGroup",
                email=f"s3-user@{domain}",
                output_id="S3User",
            ),
            UserDef(
                user_name="ec2-user",
                group="EC2UserGroup",
                email=f"ec2-user@{domain}",
                output_id="EC2User",
            ),
        ),
    ).validate()
