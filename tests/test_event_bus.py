import asyncio

from gpu_job_orchestrator.models.events import LifecycleEvent, BROADCAST_CHANNEL
from gpu_job_orchestrator.models.job import JobState
from gpu_job_orchestrator.services.event_bus import EventBus


def event(job_id, status=JobState.PROVISIONING, instance_id=None):
    return LifecycleEvent(job_id=job_id, status=status, instance_id=instance_id)


async def test_scoped_and_broadcast_subscriptions():
    bus = EventBus()
    everything = bus.subscribe()
    only_a = bus.subscribe("a")

    delivered = bus.publish(event("a"))
    bus.publish(event("b"))

    assert delivered == 2
    assert [e.job_id for e in everything.pending()] == ["a", "b"]
    assert [e.job_id for e in only_a.pending()] == ["a"]
    assert only_a.channel == "job-a"
    assert everything.channel == BROADCAST_CHANNEL


async def test_late_subscriber_misses_earlier_events():
    bus = EventBus()
    bus.publish(event("a", JobState.PENDING))

    late = bus.subscribe("a")
    bus.publish(event("a", JobState.PROVISIONING))

    assert [e.status for e in late.pending()] == [JobState.PROVISIONING]


async def test_full_queue_drops_events():
    bus = EventBus(max_queue=2)
    slow = bus.subscribe()

    results = [bus.publish(event(str(i))) for i in range(4)]

    assert results == [1, 1, 0, 0]
    assert slow.dropped == 2
    assert [e.job_id for e in slow.pending()] == ["0", "1"]


async def test_iteration_ends_on_close():
    bus = EventBus()
    subscription = bus.subscribe("a")
    received = []

    async def consume():
        async for item in subscription:
            received.append(item.status)

    consumer = asyncio.ensure_future(consume())
    bus.publish(event("a", JobState.PROVISIONING))
    bus.publish(event("a", JobState.RUNNING))
    await asyncio.sleep(0)
    subscription.close()
    await asyncio.wait_for(consumer, 1.0)

    assert received == [JobState.PROVISIONING, JobState.RUNNING]
    assert bus.subscriber_count == 0


async def test_get_times_out():
    bus = EventBus()
    subscription = bus.subscribe()

    assert await subscription.get(timeout=0.01) is None


async def test_context_manager_unsubscribes():
    bus = EventBus()

    async with bus.subscribe("a") as subscription:
        assert bus.subscriber_count == 1
        bus.publish(event("a"))
        assert (await subscription.get(timeout=0.1)).job_id == "a"

    assert bus.subscriber_count == 0
    assert bus.publish(event("a")) == 0
