import io
import urllib.error
import urllib.request
from typing import Any

import anyio
import pytest
from conftest import (
    ScriptedSource,
    inline_query_payload,
    make_update,
    message_payload,
    msg,
)

from balebot import (
    BotApi,
    CursorStore,
    EngineState,
    ErrorKind,
    ErrorReport,
    EventDispatcher,
    FixedDelayRetryPolicy,
    PollingConfiguration,
    PollingEngine,
    ServiceError,
    TransportError,
    Update,
    UpdateType,
)


class Harness:
    def __init__(
        self,
        steps: list[Any],
        *,
        offset: int = 0,
        delay: float = 0.0,
        **config: Any,
    ) -> None:
        self.stop_event = anyio.Event()
        self.source = ScriptedSource(steps, when_exhausted=self.stop_event.set)
        self.cursor = CursorStore(offset)
        self.dispatcher = EventDispatcher()
        self.states: list[EngineState] = []
        self.reports: list[ErrorReport] = []
        self.dispatched: list[tuple[UpdateType, int]] = []
        self.commits: list[int] = []
        self.dispatcher.register_error(self.reports.append)
        self.dispatcher.register_commit(self.commits.append)
        for kind in UpdateType:
            self.dispatcher.register(kind, self._record(kind))
        self.engine = PollingEngine(
            self.source,
            self.cursor,
            self.dispatcher,
            PollingConfiguration(
                retry_policy=FixedDelayRetryPolicy(delay=delay), **config
            ),
            self.stop_event,
            state_listener=self.states.append,
        )

    def _record(self, kind: UpdateType):
        def handler(update: Update) -> None:
            self.dispatched.append((kind, update.update_id))

        return handler

    async def run(self) -> ErrorReport | None:
        with anyio.fail_after(5):
            return await self.engine.run()


@pytest.mark.anyio
async def test_batch_is_classified_dispatched_and_cursor_moves_past_max() -> None:
    h = Harness(
        [
            [
                make_update(100, message=message_payload()),
                make_update(101, inline_query=inline_query_payload()),
            ]
        ]
    )

    assert await h.run() is None

    assert h.dispatched == [(UpdateType.MESSAGE, 100), (UpdateType.INLINE_QUERY, 101)]
    assert h.cursor.current() == 102
    assert h.commits == [102]
    assert h.source.offsets == [0, 102]
    assert h.engine.state is EngineState.STOPPED


@pytest.mark.anyio
async def test_empty_batch_leaves_cursor_and_dispatches_nothing() -> None:
    h = Harness([[], []], offset=55)

    await h.run()

    assert h.dispatched == []
    assert h.commits == []
    assert h.cursor.current() == 55
    assert h.source.offsets == [55, 55, 55]
    # IDLE -> ACQUIRING -> DISPATCHING -> IDLE -> ACQUIRING ...
    assert h.states[:5] == [
        EngineState.IDLE,
        EngineState.ACQUIRING,
        EngineState.DISPATCHING,
        EngineState.IDLE,
        EngineState.ACQUIRING,
    ]


@pytest.mark.anyio
async def test_cursor_tracks_max_id_across_batches() -> None:
    h = Harness([[msg(3), msg(4)], [msg(10)], [msg(11), msg(12), msg(15)]])

    await h.run()

    assert [uid for _, uid in h.dispatched] == [3, 4, 10, 11, 12, 15]
    assert h.cursor.current() == 16
    assert h.commits == [5, 11, 16]
    assert h.source.offsets == [0, 5, 11, 16]


@pytest.mark.anyio
async def test_out_of_order_duplicate_and_stale_ids_are_not_redispatched() -> None:
    h = Harness([[msg(7), msg(5), msg(6), msg(6)], [msg(6), msg(8)]])

    await h.run()

    assert [uid for _, uid in h.dispatched] == [5, 6, 7, 8]
    assert h.cursor.current() == 9


@pytest.mark.anyio
async def test_k_transport_failures_mean_k_backoffs_and_no_cursor_move() -> None:
    k = 3
    steps: list[Any] = [TransportError("getUpdates failed: network error")] * k
    steps.append([msg(20)])
    h = Harness(steps, offset=20)

    await h.run()

    assert h.states.count(EngineState.BACKOFF) == k
    assert h.source.offsets[: k + 1] == [20] * (k + 1)
    assert [r.kind for r in h.reports] == [ErrorKind.TRANSPORT] * k
    assert all(r.is_fatal is False for r in h.reports)
    assert h.dispatched == [(UpdateType.MESSAGE, 20)]
    assert h.cursor.current() == 21
    # Each backoff is followed by a new acquire.
    for i, state in enumerate(h.states):
        if state is EngineState.BACKOFF:
            assert h.states[i + 1] is EngineState.ACQUIRING


@pytest.mark.anyio
async def test_rate_limit_and_server_errors_are_recoverable() -> None:
    h = Harness(
        [
            ServiceError("429", error_code=429, retry_after=0),
            ServiceError("502", error_code=502),
            RuntimeError("unexpected source failure"),
            [msg(1)],
        ]
    )

    assert await h.run() is None

    assert [r.kind for r in h.reports] == [
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVER,
        ErrorKind.INTERNAL,
    ]
    assert h.dispatched == [(UpdateType.MESSAGE, 1)]


@pytest.mark.anyio
async def test_authorization_failure_stops_with_fatal_report_and_keeps_cursor() -> None:
    h = Harness([[msg(9)], ServiceError("401", error_code=401), [msg(10)]])

    fatal = await h.run()

    assert fatal is not None
    kind, _message, is_fatal = fatal
    assert kind is ErrorKind.UNAUTHORIZED
    assert is_fatal is True
    assert h.reports == [fatal]
    assert h.cursor.current() == 10
    assert len(h.source.calls) == 2
    assert EngineState.BACKOFF not in h.states
    assert h.states[-1] is EngineState.STOPPED


@pytest.mark.anyio
async def test_stop_during_backoff_skips_further_fetches() -> None:
    h = Harness([TransportError("down"), [msg(1)]], delay=60.0)

    def on_state(state: EngineState) -> None:
        h.states.append(state)
        if state is EngineState.BACKOFF:
            h.stop_event.set()

    h.engine._state_listener = on_state
    h.states.clear()

    await h.run()

    assert len(h.source.calls) == 1
    assert h.states[-2:] == [EngineState.BACKOFF, EngineState.STOPPED]
    assert h.dispatched == []


@pytest.mark.anyio
async def test_stop_before_start_never_fetches() -> None:
    h = Harness([[msg(1)]])
    h.stop_event.set()

    await h.run()

    assert h.source.calls == []
    assert h.engine.state is EngineState.STOPPED


@pytest.mark.anyio
async def test_stop_after_fetch_drops_batch_without_moving_cursor() -> None:
    h = Harness([])

    async def fetch_then_stop(**kwargs: Any) -> list[Update]:
        h.stop_event.set()
        return [msg(1)]

    h.source.get_updates = fetch_then_stop  # type: ignore[method-assign]

    await h.run()

    assert h.dispatched == []
    assert h.cursor.current() == 0
    assert EngineState.DISPATCHING not in h.states


@pytest.mark.anyio
async def test_ambiguous_update_goes_to_unknown_and_is_reported() -> None:
    ambiguous = make_update(
        4, message=message_payload(), inline_query=inline_query_payload()
    )
    h = Harness([[ambiguous, msg(5)]])

    await h.run()

    assert h.dispatched == [(UpdateType.UNKNOWN, 4), (UpdateType.MESSAGE, 5)]
    assert [(r.kind, r.is_fatal) for r in h.reports] == [(ErrorKind.PROTOCOL, False)]
    assert h.cursor.current() == 6


@pytest.mark.anyio
async def test_handler_failure_does_not_stop_loop_or_hold_cursor() -> None:
    h = Harness([[msg(1), msg(2)], [msg(3)]])

    def explode(update: Update) -> None:
        if update.update_id == 1:
            raise KeyError("bad handler")

    h.dispatcher.register(UpdateType.MESSAGE, explode)

    await h.run()

    assert [uid for _, uid in h.dispatched] == [1, 2, 3]
    assert [r.kind for r in h.reports] == [ErrorKind.HANDLER]
    assert h.cursor.current() == 4


@pytest.mark.anyio
async def test_internal_failure_is_reported_fatal_instead_of_raised() -> None:
    class BrokenPolicy:
        def is_fatal(self, error: Exception) -> bool:
            raise RuntimeError("policy bug")

        def delay_seconds(self, error: Exception, attempt: int) -> float:
            return 0.0

    h = Harness([TransportError("down")])
    h.engine._configuration = PollingConfiguration(retry_policy=BrokenPolicy())

    fatal = await h.run()

    assert fatal is not None
    assert fatal.kind is ErrorKind.INTERNAL
    assert fatal.is_fatal is True
    assert h.reports == [fatal]
    assert h.engine.state is EngineState.STOPPED


@pytest.mark.anyio
async def test_configuration_is_passed_to_source() -> None:
    h = Harness(
        [[]],
        offset=3,
        timeout_seconds=25,
        limit=10,
        allowed_updates=(UpdateType.MESSAGE, UpdateType.CALLBACK_QUERY),
    )

    await h.run()

    assert h.source.calls[0] == {
        "offset": 3,
        "limit": 10,
        "timeout_seconds": 25,
        "allowed_updates": (UpdateType.MESSAGE, UpdateType.CALLBACK_QUERY),
    }


def test_polling_configuration_validation() -> None:
    config = PollingConfiguration()
    assert config.timeout_seconds == 30
    assert config.limit == 100
    assert config.allowed_updates is None
    assert isinstance(config.retry_policy, FixedDelayRetryPolicy)

    with pytest.raises(ValueError):
        PollingConfiguration(limit=0)
    with pytest.raises(ValueError):
        PollingConfiguration(limit=101)
    with pytest.raises(ValueError):
        PollingConfiguration(timeout_seconds=-1)
    with pytest.raises(ValueError, match="unknown"):
        PollingConfiguration(allowed_updates=(UpdateType.UNKNOWN,))
    with pytest.raises(ValueError):
        config.limit = 5  # type: ignore[misc]


@pytest.mark.anyio
async def test_unauthorized_html_response_stops_the_loop(monkeypatch) -> None:
    calls: list[str] = []

    def deny(request: urllib.request.Request, timeout: float) -> Any:
        calls.append(request.full_url)
        raise urllib.error.HTTPError(
            request.full_url,
            401,
            "Unauthorized",
            {},  # type: ignore[arg-type]
            io.BytesIO(b"<html><body>401 Unauthorized</body></html>"),
        )

    monkeypatch.setattr(urllib.request, "urlopen", deny)
    h = Harness([])
    h.engine._source = BotApi(token="1:revoked")

    fatal = await h.run()

    assert fatal is not None
    assert fatal.kind is ErrorKind.UNAUTHORIZED
    assert fatal.is_fatal is True
    assert len(calls) == 1
    assert EngineState.BACKOFF not in h.states
    assert h.cursor.current() == 0


@pytest.mark.anyio
async def test_undecodable_update_is_delivered_as_unknown_and_reported() -> None:
    raw = {"update_id": 3, "message": {"text": "missing ids"}}
    undecoded = Update.model_validate({"update_id": 3, "raw": raw})
    h = Harness([[undecoded, msg(4)]])

    await h.run()

    assert h.dispatched == [(UpdateType.UNKNOWN, 3), (UpdateType.MESSAGE, 4)]
    assert [(r.kind, r.is_fatal) for r in h.reports] == [(ErrorKind.PROTOCOL, False)]
    assert "update_id=3" in h.reports[0].message
    assert h.cursor.current() == 5
