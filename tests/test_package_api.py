import asyncio
from dataclasses import dataclass

import pytest

import ctxscope
from ctxscope import (
    ContextKey,
    OutsideScopeError,
    get_default_context,
    register_context_key,
    run_with_context,
)


@dataclass
class JobContext:
    job_id: str


JOB = ContextKey[JobContext]("job_context")


def test_public_names_exported():
    for name in ctxscope.__all__:
        assert hasattr(ctxscope, name)


def test_default_context_is_shared():
    assert get_default_context() is get_default_context()
    assert register_context_key(JOB) is get_default_context().accessor(JOB)


@pytest.mark.asyncio
async def test_module_level_run_with_context():
    job = register_context_key(JOB)

    async def handler():
        await asyncio.sleep(0)
        return job.job_id

    assert await run_with_context(JOB, JobContext(job_id="j-1"), handler) == "j-1"

    with pytest.raises(OutsideScopeError):
        _ = job.job_id
