import asyncio

import pytest

from mutation_pipeline import MutationPipeline, ViewContext, describe_failure
from notifications import Notifier
from stores import CollectionStore
from utils import (
    BACKEND_UNREACHABLE,
    EngineException,
    TransportException,
    ValidationException,
)


async def returns(value):
    return value


async def raises(error):
    raise error


class TestRun:
    """Submission lifecycle of a single keyed mutation"""

    async def test_success_notifies_and_applies(self, pipeline, notifier):
        applied = []
        outcome = await pipeline.run(
            "create_disk",
            "disk:a",
            lambda: returns({"message": "ok"}),
            on_success=applied.append,
            success_message="Virtual disk created successfully!",
        )
        assert outcome.ok
        assert outcome.key == "disk:a"
        assert applied == [{"message": "ok"}]
        assert notifier.drain()[0].message == "Virtual disk created successfully!"
        assert not pipeline.is_busy("disk:a")

    async def test_success_message_can_use_result(self, pipeline, notifier):
        await pipeline.run(
            "build_image",
            "build:app",
            lambda: returns({"message": "Built app"}),
            success_message=lambda result: result["message"],
        )
        assert notifier.drain()[0].message == "Built app"

    async def test_async_on_success_is_awaited(self, pipeline):
        seen = []

        async def refetch(result):
            await asyncio.sleep(0)
            seen.append(result)

        await pipeline.run("start", "container:c1", lambda: returns(1), on_success=refetch)
        assert seen == [1]

    async def test_engine_failure_uses_server_message(self, pipeline, notifier):
        outcome = await pipeline.run(
            "convert_disk",
            "disk:a",
            lambda: raises(EngineException("qemu-img failed", 500)),
            failure_message="Error converting disk format",
        )
        assert outcome.state == "failed"
        assert outcome.notification.message == "qemu-img failed"
        assert notifier.drain()[0].level == "error"
        assert not pipeline.is_busy("disk:a")

    async def test_engine_failure_without_message_uses_fallback(self, pipeline):
        outcome = await pipeline.run(
            "convert_disk",
            "disk:a",
            lambda: raises(EngineException(None, 500)),
            failure_message="Error converting disk format",
        )
        assert outcome.notification.message == "Error converting disk format"

    async def test_transport_failure_message(self, pipeline):
        outcome = await pipeline.run(
            "delete_image",
            "image:x",
            lambda: raises(TransportException()),
            failure_message="Failed to delete image",
        )
        assert outcome.notification.message == BACKEND_UNREACHABLE

    async def test_failure_does_not_run_on_success(self, pipeline):
        applied = []
        await pipeline.run(
            "start",
            "container:c1",
            lambda: raises(EngineException("boom", 500)),
            on_success=applied.append,
        )
        assert applied == []

    async def test_failure_detail(self, pipeline):
        outcome = await pipeline.run(
            "build_image",
            "build:app",
            lambda: raises(EngineException("Build failed", 500, {"logs": "step 3/5"})),
            failure_detail=lambda error: error.logs,
        )
        assert outcome.notification.detail == "step 3/5"

    async def test_unexpected_exception_clears_busy_flag(self, pipeline):
        with pytest.raises(RuntimeError):
            await pipeline.run("start", "container:c1", lambda: raises(RuntimeError("bug")))
        assert not pipeline.is_busy("container:c1")


class TestBusyFlags:
    """At most one in-flight request per resource key"""

    async def test_second_submission_for_same_key_is_rejected(self, pipeline):
        release = asyncio.Event()
        calls = []

        async def slow():
            calls.append(1)
            await release.wait()
            return "done"

        first = asyncio.create_task(pipeline.run("start", "container:c1", slow))
        await asyncio.sleep(0)
        assert pipeline.is_busy("container:c1")

        second = await pipeline.run("start", "container:c1", slow)
        assert second.state == "rejected"

        release.set()
        assert (await first).ok
        assert calls == [1]
        assert pipeline.busy_keys == set()

    async def test_distinct_keys_run_concurrently(self, pipeline):
        release = asyncio.Event()

        async def slow():
            await release.wait()

        first = asyncio.create_task(pipeline.run("start", "container:c1", slow))
        second = asyncio.create_task(pipeline.run("start", "container:c2", slow))
        await asyncio.sleep(0)
        assert pipeline.busy_keys == {"container:c1", "container:c2"}

        release.set()
        outcomes = await asyncio.gather(first, second)
        assert all(outcome.ok for outcome in outcomes)

    async def test_key_is_free_again_after_failure(self, pipeline):
        await pipeline.run("start", "container:c1", lambda: raises(TransportException()))
        outcome = await pipeline.run("start", "container:c1", lambda: returns(None))
        assert outcome.ok

    async def test_unkeyed_runs_are_never_rejected(self, pipeline):
        release = asyncio.Event()

        async def slow():
            await release.wait()

        first = asyncio.create_task(pipeline.run("disk_info", None, slow))
        second = asyncio.create_task(pipeline.run("disk_info", None, slow))
        await asyncio.sleep(0)
        release.set()
        outcomes = await asyncio.gather(first, second)
        assert [o.state for o in outcomes] == ["succeeded", "succeeded"]


class TestReads:
    """Authoritative re-fetches into a store"""

    async def test_read_replaces_snapshot(self, pipeline):
        store = CollectionStore("disks")
        outcome = await pipeline.read("refresh", store, lambda: returns(["a", "b"]))
        assert outcome.ok
        assert store.items == ("a", "b")
        assert store.snapshot.version == 1

    async def test_failed_read_keeps_previous_snapshot(self, pipeline):
        store = CollectionStore("disks")
        store.replace(["a"])
        outcome = await pipeline.read(
            "refresh",
            store,
            lambda: raises(TransportException()),
            failure_message="Failed to load available disks",
        )
        assert outcome.state == "failed"
        assert store.items == ("a",)

    async def test_older_read_cannot_overwrite_newer(self, pipeline):
        store = CollectionStore("containers")
        slow_release = asyncio.Event()

        async def slow():
            await slow_release.wait()
            return ["stale"]

        older = asyncio.create_task(pipeline.read("refresh", store, slow))
        await asyncio.sleep(0)
        await pipeline.read("reload", store, lambda: returns(["fresh"]))
        slow_release.set()
        await older

        assert store.items == ("fresh",)

    async def test_rejected_read_does_not_discard_read_in_flight(self, pipeline):
        store = CollectionStore("disks")
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return ["a", "b"]

        first = asyncio.create_task(pipeline.read("refresh", store, slow, key="disks"))
        await asyncio.sleep(0)
        second = await pipeline.read("refresh", store, lambda: returns(["x"]), key="disks")
        assert second.state == "rejected"

        release.set()
        assert (await first).ok
        assert store.items == ("a", "b")


class TestViewContext:
    async def test_late_success_is_dropped_after_unmount(self, pipeline, notifier):
        context = ViewContext("docker")
        store = CollectionStore("images")
        release = asyncio.Event()

        async def slow():
            await release.wait()
            return ["image"]

        task = asyncio.create_task(
            pipeline.read("refresh", store, slow, success_message="refreshed", context=context)
        )
        await asyncio.sleep(0)
        context.unmount()
        release.set()
        await task

        assert store.items == ()
        assert notifier.pending() == []

    async def test_late_failure_is_silent_after_unmount(self, pipeline, notifier):
        context = ViewContext("disks")
        context.unmount()
        outcome = await pipeline.run(
            "refresh", "disks", lambda: raises(TransportException()), context=context
        )
        assert outcome.state == "failed"
        assert outcome.notification is None
        assert notifier.pending() == []


class TestInvalid:
    def test_invalid_reports_field_errors(self, pipeline, notifier):
        outcome = pipeline.invalid(
            "create_disk", "disk:", ValidationException({"name": ["Disk name is required"]})
        )
        assert outcome.state == "failed"
        assert outcome.errors == {"name": ["Disk name is required"]}
        assert notifier.drain()[0].message == "Disk name is required"


class TestDescribeFailure:
    def test_transport(self):
        assert describe_failure(TransportException(), "x") == BACKEND_UNREACHABLE

    def test_engine_with_message(self):
        assert describe_failure(EngineException("disk busy", 409), "x") == "disk busy"

    def test_engine_without_message(self):
        assert describe_failure(EngineException(None, 500), "fallback") == "fallback"


class TestNotifier:
    def test_drain_empties_queue(self):
        notifier = Notifier()
        notifier.success("one")
        notifier.error("two", "detail")
        drained = notifier.drain()
        assert [n.level for n in drained] == ["success", "error"]
        assert drained[1].detail == "detail"
        assert notifier.pending() == []

    def test_queue_is_bounded(self):
        notifier = Notifier(max_pending=2)
        for message in ("a", "b", "c"):
            notifier.info(message)
        assert [n.message for n in notifier.pending()] == ["b", "c"]


class TestPipelineFixture:
    def test_fresh_pipeline_is_idle(self):
        assert MutationPipeline(Notifier()).busy_keys == set()
