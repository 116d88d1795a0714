"""Build CloudWatch console links that point at a holder's log stream."""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote, quote_plus

from leaselock.services.invocation import current_invocation
from leaselock.utils.env import get_env


def _console_escape(value: str) -> str:
    return value.replace("%", "$")


def log_group_url(region: str, group: str) -> str:
    log_group = _console_escape(quote(quote(group, safe=""), safe=""))
    return (
        f"https://{region}.console.aws.amazon.com/cloudwatch/home?region={region}"
        f"#logsV2:log-groups/log-group/{log_group}/"
    )


def filtered_log_stream_url(region: str, group: str, stream: str, pattern: str) -> str:
    log_group = _console_escape(quote(quote(group, safe=""), safe=""))
    stream_param = f"{quote_plus(stream)}?filterPattern={quote_plus(pattern)}"
    return (
        f"https://{region}.console.aws.amazon.com/cloudwatch/home?region={region}"
        f"#logsV2:log-groups/log-group/{log_group}/log-events/{_console_escape(quote(stream_param, safe=''))}"
    )


def request_log_stream_url(region: str, group: str, stream: str, request_id: str) -> str:
    return filtered_log_stream_url(region, group, stream, f'"{request_id}"')


def holder_log_ref_from_environment() -> Optional[str]:
    """Return a log link for the bound invocation, if one can be built.

    An explicit ``log_ref`` on the invocation wins; otherwise the AWS Lambda
    runtime variables are used. Outside Lambda this returns None.
    """
    invocation = current_invocation()
    if invocation is None:
        return None
    if invocation.log_ref:
        return invocation.log_ref
    region = get_env("AWS_REGION") or get_env("AWS_DEFAULT_REGION")
    group = get_env("AWS_LAMBDA_LOG_GROUP_NAME")
    stream = get_env("AWS_LAMBDA_LOG_STREAM_NAME")
    if not (region and group and stream):
        return None
    return request_log_stream_url(region, group, stream, invocation.request_id)
