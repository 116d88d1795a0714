from __future__ import annotations

import pytest

from leaselock.core.manager import LockManager
from leaselock.core.tokens import bind_invocation
from leaselock.services.log_links import (
    holder_log_ref_from_environment,
    log_group_url,
    request_log_stream_url,
)


def test_log_group_url_double_escapes_group():
    url = log_group_url("eu-west-1", "/aws/lambda/worker")

    assert url == (
        "https://eu-west-1.console.aws.amazon.com/cloudwatch/home?region=eu-west-1"
        "#logsV2:log-groups/log-group/$252Faws$252Flambda$252Fworker/"
    )


def test_request_log_stream_url_filters_on_request_id():
    url = request_log_stream_url("us-east-1", "/aws/lambda/fn", "2026/10/19/[$LATEST]abc", "req-1")

    assert url.startswith("https://us-east-1.console.aws.amazon.com/cloudwatch/home?region=us-east-1")
    assert "log-events/" in url
    assert "%" not in url.split("#", 1)[1]
    assert "req-1" in url


def test_no_log_ref_outside_an_invocation(monkeypatch):
    monkeypatch.setenv("AWS_LAMBDA_LOG_GROUP_NAME", "/aws/lambda/fn")

    assert holder_log_ref_from_environment() is None


def test_log_ref_built_from_lambda_environment(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_LAMBDA_LOG_GROUP_NAME", "/aws/lambda/fn")
    monkeypatch.setenv("AWS_LAMBDA_LOG_STREAM_NAME", "stream-1")

    with bind_invocation("req-9"):
        ref = holder_log_ref_from_environment()

    assert ref == request_log_stream_url("us-east-1", "/aws/lambda/fn", "stream-1", "req-9")


def test_explicit_invocation_log_ref_wins(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-east-1")

    with bind_invocation("req-9", log_ref="https://logs.example/req-9"):
        assert holder_log_ref_from_environment() == "https://logs.example/req-9"


@pytest.mark.asyncio
async def test_acquire_records_invocation_log_ref(manager: LockManager, make_manager):
    with bind_invocation("req-42", log_ref="https://logs.example/req-42"):
        result = await manager.acquire("job-20")

    assert result.handle.fencing_token == "req-42-0"
    rival = await make_manager("holder-b").acquire("job-20")
    assert rival.existing.holder_log_ref == "https://logs.example/req-42"
    assert rival.existing.fencing_token == "req-42-0"
    await result.handle.release()
