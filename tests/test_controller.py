import asyncio
import threading

import pytest

from penguin.controller import Action, ActionKind, Controller, Lagged


def test_action_constructors():
    assert Action.reload().kind is ActionKind.RELOAD
    msg = Action.message("hello")
    assert msg.kind is ActionKind.MESSAGE
    assert msg.text == "hello"


def test_send_counts_subscribers():
    controller = Controller()
    assert controller.send(Action.reload()) == 0
    first = controller.subscribe()
    controller.subscribe()
    assert controller.send(Action.reload()) == 2
    first.close()
    assert controller.send(Action.reload()) == 1


def test_invalid_capacity():
    with pytest.raises(ValueError):
        Controller(0)


@pytest.mark.asyncio
async def test_reload_and_message_are_received_in_order():
    controller = Controller()
    sub = controller.subscribe()
    controller.reload()
    controller.show_message("<b>hi</b>")
    assert await sub.recv() == Action.reload()
    assert await sub.recv() == Action.message("<b>hi</b>")


@pytest.mark.asyncio
async def test_all_subscribers_get_each_action():
    controller = Controller()
    subs = [controller.subscribe() for _ in range(3)]
    controller.show_message("x")
    received = [await sub.recv() for sub in subs]
    assert received == [Action.message("x")] * 3


@pytest.mark.asyncio
async def test_lagged_subscriber():
    controller = Controller(capacity=2)
    sub = controller.subscribe()
    controller.show_message("a")
    controller.show_message("b")
    controller.show_message("c")
    with pytest.raises(Lagged) as info:
        await sub.recv()
    assert info.value.skipped == 1
    assert await sub.recv() == Action.message("b")
    assert await sub.recv() == Action.message("c")


@pytest.mark.asyncio
async def test_recv_waits_for_action():
    controller = Controller()
    sub = controller.subscribe()
    task = asyncio.ensure_future(sub.recv())
    await asyncio.sleep(0.01)
    assert not task.done()
    controller.reload()
    assert await asyncio.wait_for(task, 1) == Action.reload()


@pytest.mark.asyncio
async def test_send_from_other_thread_wakes_receiver():
    controller = Controller()
    sub = controller.subscribe()
    task = asyncio.ensure_future(sub.recv())
    await asyncio.sleep(0.01)
    thread = threading.Thread(target=controller.show_message, args=("from thread",))
    thread.start()
    result = await asyncio.wait_for(task, 1)
    thread.join()
    assert result == Action.message("from thread")


@pytest.mark.asyncio
async def test_close_ends_pending_recv():
    controller = Controller()
    sub = controller.subscribe()
    task = asyncio.ensure_future(sub.recv())
    await asyncio.sleep(0.01)
    sub.close()
    assert await asyncio.wait_for(task, 1) is None
    assert controller.send(Action.reload()) == 0


@pytest.mark.asyncio
async def test_late_subscriber_misses_earlier_actions():
    controller = Controller()
    controller.reload()
    sub = controller.subscribe()
    controller.show_message("later")
    assert await sub.recv() == Action.message("later")