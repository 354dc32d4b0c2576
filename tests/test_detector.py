import pytest

from relay.config import DetectorSettings
from relay.detector import CompletionDetector, check_error_states
from relay.errors import ResponseTimeoutError, SessionExpired, UpstreamError
from relay.locators import LocatorResolver
from relay.models import DetectionState
from tests.fake_ui import ASSISTANT, FakeClock, FakeElement, FakePage, chat_page, fake_poller

SETTINGS = DetectorSettings(poll_interval_ms=100, stable_polls=2)


def _detector(page, clock, timeout_ms=10_000, before_count=1, settings=SETTINGS):
    return CompletionDetector(
        page,
        LocatorResolver(),
        before_count=before_count,
        timeout_ms=timeout_ms,
        settings=settings,
        poller=fake_poller(clock, settings.poll_interval_ms),
        request_id="test",
    )


def _reply_page(clock, text, stop_visible, history=1):
    page = chat_page(history=history)
    page.add("testid=stop-button", FakeElement(visible=stop_visible))
    page.add(ASSISTANT, FakeElement(text=text))
    return page


@pytest.mark.asyncio
async def test_busy_indicator_then_stable_text_is_done():
    clock = FakeClock()
    page = _reply_page(
        clock,
        text=lambda: "4" if clock() >= 0.3 else "",
        stop_visible=lambda: 0.2 <= clock() < 0.6,
    )
    detector = _detector(page, clock)

    result = await detector.run()

    assert result.state is DetectionState.DONE
    assert result.text == "4"
    assert result.partial is False
    assert detector.history == [
        DetectionState.AWAITING_START,
        DetectionState.GENERATING,
        DetectionState.STABILIZING,
        DetectionState.DONE,
    ]
    # two intervals of stability after the indicator cleared at 0.6s
    assert clock() == pytest.approx(0.8)


@pytest.mark.asyncio
async def test_finished_detector_cannot_change_state():
    clock = FakeClock()
    detector = _detector(_reply_page(clock, text="done", stop_visible=False), clock)

    await detector.run()

    assert detector.state.terminal
    with pytest.raises(RuntimeError, match="already finished"):
        detector._transition(DetectionState.GENERATING)
    assert detector.history[-1] is DetectionState.DONE


@pytest.mark.asyncio
async def test_reply_without_busy_indicator_still_completes():
    clock = FakeClock()
    page = _reply_page(clock, text="quick", stop_visible=False)
    detector = _detector(page, clock, timeout_ms=10_000)

    result = await detector.run()

    assert result.text == "quick"
    assert DetectionState.GENERATING in detector.history
    # the start wait is bounded by 8% of the timeout
    assert clock() >= 0.8
    assert clock() < 2.0


@pytest.mark.asyncio
async def test_changing_text_resets_stability():
    clock = FakeClock()
    chunks = ["The", "The answer", "The answer", "The answer is", "The answer is 42"]
    reads = []

    def streamed_text():
        reads.append(clock())
        return chunks[min(len(reads) - 1, len(chunks) - 1)]

    page = _reply_page(clock, text=streamed_text, stop_visible=False)

    result = await _detector(page, clock).run()

    assert result.text == "The answer is 42"
    # one repeated chunk in the middle must not end detection early
    assert len(reads) == 7


@pytest.mark.asyncio
async def test_continue_button_resets_stability_and_returns_continued_text():
    clock = FakeClock()
    state = {"clicked_at": None, "stable_at_click": None}
    detector = None

    def click_continue():
        state["clicked_at"] = clock()
        state["stable_at_click"] = detector.stable_ms

    def reply_text():
        clicked_at = state["clicked_at"]
        if clicked_at is not None and clock() >= clicked_at + 0.15:
            return "part one part two"
        return "part one"

    page = _reply_page(clock, text=reply_text, stop_visible=False)
    page.add(
        "testid=continue-button",
        FakeElement(
            visible=lambda: state["clicked_at"] is None and clock() >= 0.95,
            on_click=click_continue,
        ),
    )
    detector = _detector(page, clock)

    result = await detector.run()

    assert detector.continuations == 1
    assert state["stable_at_click"] == pytest.approx(100)
    assert result.state is DetectionState.DONE
    assert result.text == "part one part two"


@pytest.mark.asyncio
async def test_login_control_during_stabilizing_is_session_expired():
    clock = FakeClock()
    page = _reply_page(clock, text=lambda: f"chunk {int(clock() * 10)}", stop_visible=False)
    page.add("testid=login-button", FakeElement(visible=lambda: clock() >= 1.0))
    detector = _detector(page, clock)

    with pytest.raises(SessionExpired):
        await detector.run()

    assert detector.state is DetectionState.ERROR
    assert DetectionState.STABILIZING in detector.history
    assert DetectionState.TIMEOUT not in detector.history


@pytest.mark.asyncio
async def test_auth_redirect_is_session_expired():
    clock = FakeClock()
    page = _reply_page(clock, text="", stop_visible=True)
    detector = _detector(page, clock)
    page.url = "https://auth.openai.com/log-in"

    with pytest.raises(SessionExpired):
        await detector.run()

    assert detector.history == [DetectionState.AWAITING_START, DetectionState.ERROR]


@pytest.mark.asyncio
async def test_error_banner_is_upstream_error_with_detail():
    clock = FakeClock()
    page = _reply_page(clock, text="half", stop_visible=lambda: clock() < 0.5)
    page.add("testid=error-toast", FakeElement(text="  Something went wrong.  ", visible=lambda: clock() >= 0.3))

    with pytest.raises(UpstreamError) as exc_info:
        await _detector(page, clock).run()

    assert exc_info.value.detail == "Something went wrong."
    assert "Something went wrong." in str(exc_info.value)


@pytest.mark.asyncio
async def test_timeout_with_partial_text_is_success():
    clock = FakeClock()
    page = _reply_page(clock, text="partial answer...", stop_visible=True)
    detector = _detector(page, clock, timeout_ms=1_000)

    result = await detector.run()

    assert result.state is DetectionState.TIMEOUT
    assert result.partial is True
    assert result.text == "partial answer..."
    assert clock() == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_timeout_with_empty_text_raises():
    clock = FakeClock()
    page = _reply_page(clock, text="", stop_visible=True)
    detector = _detector(page, clock, timeout_ms=1_000)

    with pytest.raises(ResponseTimeoutError) as exc_info:
        await detector.run()

    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.timeout_ms == 1_000
    assert detector.state is DetectionState.TIMEOUT


@pytest.mark.asyncio
async def test_timeout_while_text_never_settles_returns_last_read():
    clock = FakeClock()
    page = _reply_page(clock, text=lambda: "tick " * int(clock() * 10 + 1), stop_visible=False)

    result = await _detector(page, clock, timeout_ms=2_000).run()

    assert result.partial is True
    assert result.text == ("tick " * 21).strip()


@pytest.mark.asyncio
async def test_missing_reply_message_times_out():
    clock = FakeClock()
    page = chat_page(history=2)

    with pytest.raises(ResponseTimeoutError):
        await _detector(page, clock, timeout_ms=1_500, before_count=2).run()


@pytest.mark.asyncio
async def test_target_is_message_after_anchor_not_last():
    clock = FakeClock()
    page = chat_page(history=1)
    page.add(ASSISTANT, FakeElement(text="my reply"), FakeElement(text="someone else's reply"))

    result = await _detector(page, clock).run()

    assert result.text == "my reply"


@pytest.mark.asyncio
async def test_last_message_is_target_without_index_tracking():
    clock = FakeClock()
    page = chat_page(history=1)
    page.add(ASSISTANT, FakeElement(text="first"), FakeElement(text="newest"))
    settings = DetectorSettings(poll_interval_ms=100, stable_polls=2, track_by_index=False)

    result = await _detector(page, clock, settings=settings).run()

    assert result.text == "newest"


@pytest.mark.asyncio
async def test_stricter_stability_needs_more_polls():
    clock = FakeClock()
    page = _reply_page(clock, text="done", stop_visible=False)
    settings = DetectorSettings(poll_interval_ms=100, stable_polls=3)

    await _detector(page, clock, settings=settings).run()

    # start wait 0.8s, first read, then three stable intervals
    assert clock() == pytest.approx(1.1)


@pytest.mark.asyncio
async def test_check_error_states_passes_on_clean_page():
    page = FakePage()

    await check_error_states(page, LocatorResolver())


def test_start_timeout_is_fraction_of_timeout_with_cap():
    settings = DetectorSettings()

    assert settings.start_timeout_ms(10_000) == 800
    assert settings.start_timeout_ms(120_000) == 9_600
    assert settings.start_timeout_ms(600_000) == 10_000


@pytest.mark.parametrize(
    "kwargs",
    [
        {"poll_interval_ms": 0},
        {"stable_polls": 0},
        {"start_fraction": 1.0},
        {"start_timeout_cap_ms": 0},
    ],
)
def test_detector_settings_reject_invalid_values(kwargs):
    with pytest.raises(ValueError):
        DetectorSettings(**kwargs)
