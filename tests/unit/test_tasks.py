# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio

from tasks import cancel_others, current_task, wait_others


def test_current_task_outside_loop_is_none() -> None:
    assert current_task() is None


def test_cancel_others_spares_the_caller() -> None:
    async def scenario() -> tuple[bool, bool]:
        sleeper = asyncio.create_task(asyncio.sleep(10))
        me = asyncio.current_task()
        assert me is not None
        cancel_others([sleeper, me, None])
        await asyncio.sleep(0)
        return sleeper.cancelled(), me.cancelled()

    sleeper_cancelled, me_cancelled = asyncio.run(scenario())

    assert sleeper_cancelled is True
    assert me_cancelled is False


def test_wait_others_skips_caller_and_swallows_failures() -> None:
    async def boom() -> None:
        raise RuntimeError("boom")

    async def scenario() -> bool:
        failing = asyncio.create_task(boom())
        me = asyncio.current_task()
        assert me is not None
        await asyncio.wait_for(wait_others([failing, me]), timeout=1.0)
        return failing.done()

    assert asyncio.run(scenario()) is True
