import asyncio
import inspect
from typing import Any, Callable, Dict, List

from aiohttp import WSMsgType, web

from peerchat import envelope as env
from peerchat.transport import BroadcastBus


class EngineFailure(Exception):
    def __init__(self, message: str, stack: str | None = None):
        self.stack = stack
        super().__init__(message)


Handler = Callable[[Any], Any]


async def _run_handler(handlers: Dict[str, Handler], request: env.Envelope) -> env.Envelope:
    handler = handlers.get(request.type)
    if handler is None:
        return env.error_response(env.SENDER_HOST, request.seq, f"unknown operation {request.type}")
    try:
        result = handler(request.payload)
        if inspect.isawaitable(result):
            result = await result
    except EngineFailure as exc:
        return env.error_response(env.SENDER_HOST, request.seq, str(exc), exc.stack)
    return env.response(env.SENDER_HOST, request.seq, result)


class FakeEngine:
    """Answers renderer requests on a shared bus.

    Operations passed to :meth:`hold` are recorded but left unanswered until
    the test releases them, which is how blocking waits are simulated.
    """

    def __init__(self, bus: BroadcastBus) -> None:
        self.bus = bus
        self.handlers: Dict[str, Handler] = {}
        self.requests: List[env.Envelope] = []
        self.held: Dict[str, List[env.Envelope]] = {}
        self._held_ops: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = bus.subscribe(self._on_message)

    def on(self, operation: str, handler: Handler) -> None:
        self.handlers[operation] = handler

    def hold(self, operation: str) -> None:
        self._held_ops.add(operation)
        self.held.setdefault(operation, [])

    def requests_for(self, operation: str) -> List[env.Envelope]:
        return [r for r in self.requests if r.type == operation]

    def _on_message(self, message: Any) -> None:
        if message.get("sender") == env.SENDER_HOST:
            return
        request = env.from_dict(message)
        self.requests.append(request)
        if request.type in self._held_ops:
            self.held[request.type].append(request)
            return
        task = asyncio.get_running_loop().create_task(self._answer(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _answer(self, request: env.Envelope) -> None:
        reply = await _run_handler(self.handlers, request)
        await self.bus.send(reply.to_dict())

    async def respond(self, seq: int, payload: Any = None) -> None:
        await self.bus.send(env.response(env.SENDER_HOST, seq, payload).to_dict())

    async def fail(self, seq: int, message: str, stack: str | None = None) -> None:
        await self.bus.send(env.error_response(env.SENDER_HOST, seq, message, stack).to_dict())

    async def release(self, operation: str, payload: Any = None, *, error: str | None = None) -> env.Envelope:
        """Answer the oldest held request for ``operation``."""

        request = self.held[operation].pop(0)
        if error is not None:
            await self.fail(request.seq, error)
        else:
            await self.respond(request.seq, payload)
        return request

    async def wait_for_requests(self, operation: str, count: int = 1, timeout: float = 1.0) -> List[env.Envelope]:
        async def _poll() -> List[env.Envelope]:
            while len(self.requests_for(operation)) < count:
                await asyncio.sleep(0.001)
            return self.requests_for(operation)

        return await asyncio.wait_for(_poll(), timeout)

    async def wait_for_held(self, operation: str, count: int = 1, timeout: float = 1.0) -> None:
        async def _poll() -> None:
            while len(self.held.get(operation, [])) < count:
                await asyncio.sleep(0.001)

        await asyncio.wait_for(_poll(), timeout)


async def settle(rounds: int = 20) -> None:
    """Let queued bus deliveries and the tasks they wake run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


def create_engine_app(handlers: Dict[str, Handler]) -> web.Application:
    """aiohttp app speaking the envelope protocol on ``/v1/engine``."""

    async def engine_ws(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        request.app["websockets"].add(ws)
        tasks: set[asyncio.Task] = set()

        async def answer(frame: env.Envelope) -> None:
            reply = await _run_handler(handlers, frame)
            if not ws.closed:
                await ws.send_json(reply.to_dict())

        try:
            async for msg in ws:
                if msg.type != WSMsgType.TEXT:
                    break
                try:
                    frame = env.from_dict(msg.json())
                except ValueError:
                    continue
                if frame.sender != env.SENDER_RENDERER:
                    continue
                task = asyncio.create_task(answer(frame))
                tasks.add(task)
                task.add_done_callback(tasks.discard)
        finally:
            request.app["websockets"].discard(ws)
            for task in list(tasks):
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        return ws

    async def close_websockets(app: web.Application) -> None:
        for ws in list(app["websockets"]):
            await ws.close(code=1001, message=b"engine shutdown")

    app = web.Application()
    app["websockets"] = set()
    app.router.add_get("/v1/engine", engine_ws)
    app.on_shutdown.append(close_websockets)
    return app
