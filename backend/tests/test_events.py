import asyncio
import threading

from application.events import AsyncEventBus, EventType, ReportEvent


def _event(event_type=EventType.REPORT_PROGRESS, report_id="r-1", **payload):
    return ReportEvent(event_type=event_type, report_id=report_id, payload=payload)


def test_publish_sync_before_start_is_rejected():
    bus = AsyncEventBus()
    assert bus.publish_sync(_event()) is False
    assert bus.pending_count() == 0


def test_events_reach_matching_handlers_only():
    received = []

    async def on_progress(event):
        received.append(("progress", event.payload["progress"]))

    async def on_completed(event):
        received.append(("completed", event.report_id))

    async def scenario():
        bus = AsyncEventBus()
        bus.register_handler(EventType.REPORT_PROGRESS, on_progress)
        bus.register_handler(EventType.REPORT_COMPLETED, on_completed)
        await bus.start()
        await bus.publish(_event(progress=10))
        assert bus.publish_sync(_event(EventType.REPORT_COMPLETED))
        await asyncio.sleep(0.3)
        await bus.stop()

    asyncio.run(scenario())
    assert received == [("progress", 10), ("completed", "r-1")]


def test_publish_from_worker_thread():
    received = []

    async def handler(event):
        received.append(event.payload["stage"])

    async def scenario():
        bus = AsyncEventBus()
        bus.register_handler(EventType.REPORT_PROGRESS, handler)
        await bus.start()
        worker = threading.Thread(target=lambda: bus.publish_sync(_event(stage="charting")))
        worker.start()
        await asyncio.get_running_loop().run_in_executor(None, worker.join)
        await asyncio.sleep(0.3)
        await bus.stop()
        assert not bus.is_running

    asyncio.run(scenario())
    assert received == ["charting"]


def test_failing_handler_does_not_stop_others():
    received = []

    async def broken(event):
        raise RuntimeError("boom")

    async def healthy(event):
        received.append(event.event_id)

    async def scenario():
        bus = AsyncEventBus()
        bus.register_handler(EventType.REPORT_FAILED, broken)
        bus.register_handler(EventType.REPORT_FAILED, healthy)
        await bus.start()
        event = _event(EventType.REPORT_FAILED)
        await bus.publish(event)
        await asyncio.sleep(0.3)
        await bus.stop()
        return event.event_id

    event_id = asyncio.run(scenario())
    assert received == [event_id]


def test_unregister_handler():
    received = []

    async def handler(event):
        received.append(event)

    async def scenario():
        bus = AsyncEventBus()
        bus.register_handler(EventType.REPORT_PROGRESS, handler)
        bus.unregister_handler(EventType.REPORT_PROGRESS, handler)
        await bus.start()
        await bus.publish(_event())
        await asyncio.sleep(0.2)
        await bus.stop()

    asyncio.run(scenario())
    assert received == []
