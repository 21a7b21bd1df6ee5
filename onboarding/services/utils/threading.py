import asyncio
from functools import partial


async def run_in_thread(fn, *args, **kwargs):
    """Run a blocking SDK call on the default executor so the event loop stays free."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(fn, *args, **kwargs))
