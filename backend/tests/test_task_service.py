import asyncio

import pytest

from autobuild.services.task_service import TaskService


@pytest.mark.asyncio
async def test_finished_task_is_forgotten():
    service = TaskService()
    task = asyncio.create_task(asyncio.sleep(0))

    await service.track_task("p1", task)
    assert service.is_running("p1")

    await service.wait_for("p1")
    await asyncio.sleep(0)
    assert not service.is_running("p1")


@pytest.mark.asyncio
async def test_replaced_task_does_not_evict_newer_one():
    service = TaskService()
    release = asyncio.Event()
    first = asyncio.create_task(asyncio.sleep(0))
    second = asyncio.create_task(release.wait())

    await service.track_task("p1", first)
    await service.track_task("p1", second)
    await first
    await asyncio.sleep(0)

    assert service.is_running("p1")
    release.set()
    await service.wait_for("p1")


@pytest.mark.asyncio
async def test_shutdown_cancels_pending_tasks():
    service = TaskService()
    task = asyncio.create_task(asyncio.Event().wait())
    await service.track_task("p1", task)

    await service.shutdown()

    assert task.cancelled()
    assert not service.is_running("p1")


@pytest.mark.asyncio
async def test_reservation_counts_as_running_until_released():
    service = TaskService()

    assert service.reserve("p1") is True
    assert service.is_running("p1")
    assert service.reserve("p1") is False

    service.release("p1")
    assert not service.is_running("p1")
    assert service.reserve("p1") is True


@pytest.mark.asyncio
async def test_tracking_a_task_takes_over_the_reservation():
    service = TaskService()
    release = asyncio.Event()
    service.reserve("p1")

    await service.track_task("p1", asyncio.create_task(release.wait()))
    assert service.reserve("p1") is False

    release.set()
    await service.wait_for("p1")
    await asyncio.sleep(0)
    assert not service.is_running("p1")
    assert service.reserve("p1") is True


@pytest.mark.asyncio
async def test_shutdown_drops_reservations():
    service = TaskService()
    service.reserve("p1")

    await service.shutdown()

    assert not service.is_running("p1")
