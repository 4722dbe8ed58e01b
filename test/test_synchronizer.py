import threading
import time

import pytest

from conftest import FULL_EVENT, event_result, wait_until
from scalar_cam.camera_base import RpcResult
from scalar_cam.event_slots import SLOT_TABLE
from scalar_cam.settings import create_camera_settings
from scalar_cam.synchronizer import AVAILABLE_SETTINGS, StateSynchronizer


@pytest.fixture
def registry(api):
    return create_camera_settings(api)


@pytest.fixture
def sync(api, registry):
    s = StateSynchronizer(api, registry, min_interval_s=0.05)
    yield s
    s.close()


def test_full_payload_populates_state(sync, channel):
    channel.on("getEvent", event_result(FULL_EVENT))
    changed = sync.refresh(long_poll=False)

    assert changed == {"status", "zoom_percentage", "liveview_ready", "recordable_time",
                       "recordable_photos", "movie_quality", "shoot_mode",
                       "exposure_compensation", "flash_mode", "iso"}
    assert sync.state.status == "IDLE"
    assert sync.state.zoom_percentage == 40
    assert sync.state.recordable_photos == 900
    assert sync.state["iso"] == "AUTO"
    assert sync.registry["flash_mode"].options == ["off", "auto", "on"]
    assert sync.registry["exposure_compensation"].value == "0.0"
    assert channel.calls == [("getEvent", [False])]


def test_partial_payload_changes_only_present_slots(sync, channel):
    channel.on("getEvent", event_result(FULL_EVENT))
    sync.refresh(long_poll=False)
    before = sync.state.snapshot()

    channel.on("getEvent", event_result({
        1: {"type": "cameraStatus", "cameraStatus": "StillCapturing"},
        25: {"type": "exposureCompensation", "currentExposureCompensation": -6,
             "minExposureCompensation": -9, "maxExposureCompensation": 9,
             "stepIndexOfExposureCompensation": 1},
    }))
    changed = sync.refresh(long_poll=True)

    assert changed == set(SLOT_TABLE[1].names) | set(SLOT_TABLE[25].names)
    assert changed == {"status", "exposure_compensation"}
    after = sync.state.snapshot()
    assert after["status"] == "StillCapturing"
    assert after["exposure_compensation"] == "-2.0"
    for name in before:
        if name not in changed:
            assert after[name] == before[name], name


def test_refresh_never_writes_back(sync, channel):
    channel.on("getEvent", event_result(FULL_EVENT))
    sync.refresh(long_poll=False)
    assert channel.setter_calls() == []


def test_failed_poll_keeps_state(sync, channel):
    channel.on("getEvent", event_result(FULL_EVENT))
    sync.refresh(long_poll=False)

    channel.on("getEvent", RpcResult(error=[40402, "Already polling"]))
    assert sync.refresh() == set()
    assert sync.state.status == "IDLE"
    assert sync.registry["flash_mode"].value == "auto"


def test_transport_exception_is_a_failed_poll(sync, channel):
    def boom(params):
        raise ConnectionError("unreachable")

    channel.on("getEvent", boom)
    assert sync.refresh() == set()


def test_listeners_receive_change_set(sync, channel):
    seen = []
    sync.add_listener(seen.append)
    channel.on("getEvent", event_result({2: {"zoomPosition": 75}}))
    sync.refresh()
    assert seen == [{"zoom_percentage"}]


def test_unknown_recordable_counts_become_none(sync, channel):
    channel.on("getEvent", event_result({10: [
        {"recordTarget": False, "recordableTime": 5, "numberOfRecordableImages": 5},
        {"recordTarget": True, "recordableTime": -1, "numberOfRecordableImages": -1},
    ]}))
    assert sync.refresh() == {"recordable_time", "recordable_photos"}
    assert sync.state.recordable_time is None
    assert sync.state.recordable_photos is None


def test_malformed_slot_fails_loudly(sync, channel):
    channel.on("getEvent", event_result({1: {"type": "cameraStatus"}}))
    with pytest.raises(KeyError):
        sync.refresh()


def test_still_size_options_arrive_in_second_notification(sync, channel):
    seen = []
    sync.add_listener(seen.append)
    channel.on("getEvent", event_result({14: {"currentAspect": "4:3", "currentSize": "18M"}}))
    channel.on("getAvailableStillSize", RpcResult(result=[
        {"aspect": "4:3", "size": "18M"},
        [{"aspect": "4:3", "size": "18M"}, {"aspect": "16:9", "size": "13M"}],
    ]))

    assert sync.refresh() == {"photo_resolution"}
    assert sync.wait_pending(2.0)

    assert sync.registry["photo_resolution"].value == "4:3 - 18M"
    assert sync.registry["photo_resolution"].options == ["4:3 - 18M", "16:9 - 13M"]
    assert seen == [{"photo_resolution"}, {"photo_resolution", AVAILABLE_SETTINGS}]


def test_white_balance_options_and_color_temperature_range(sync, channel):
    seen = []
    sync.add_listener(seen.append)
    channel.on("getEvent", event_result({33: {
        "currentWhiteBalanceMode": "Auto WB", "currentColorTemperature": -1}}))
    channel.on("getAvailableWhiteBalance", RpcResult(result=[
        {"whiteBalanceMode": "Auto WB", "colorTemperature": -1},
        [{"whiteBalanceMode": "Auto WB", "colorTemperatureRange": []},
         {"whiteBalanceMode": "Daylight", "colorTemperatureRange": []},
         {"whiteBalanceMode": "Color Temperature", "colorTemperatureRange": [9900, 2500, 100]}],
    ]))

    assert sync.refresh() == {"white_balance", "color_temperature"}
    assert sync.wait_pending(2.0)

    reg = sync.registry
    assert reg["white_balance"].options == ["Auto WB", "Daylight", "Color Temperature"]
    assert reg["color_temperature"].options[0] == "2500"
    assert reg["color_temperature"].value == "-1"
    assert seen[-1] == {"white_balance", "color_temperature", AVAILABLE_SETTINGS}
    assert channel.setter_calls() == []


def test_failed_white_balance_fetch_clears_options(sync, channel):
    sync.registry["white_balance"].options = ["Auto WB"]
    channel.on("getEvent", event_result({33: {
        "currentWhiteBalanceMode": "Auto WB", "currentColorTemperature": -1}}))
    channel.on("getAvailableWhiteBalance", RpcResult(error=[1, "Not Available Now"]))

    sync.refresh()
    assert sync.wait_pending(2.0)
    assert sync.registry["white_balance"].options is None


def test_full_refresh_resets_options_first(sync, channel, registry):
    registry["focus_mode"].options = ["AF-S", "MF"]
    channel.on("getEvent", event_result(FULL_EVENT))
    seen = []
    sync.add_listener(seen.append)

    sync.full_refresh()

    assert registry["focus_mode"].options is None
    assert registry["flash_mode"].options == ["off", "auto", "on"]
    assert seen[-1] == {AVAILABLE_SETTINGS}


# ---------- Polling loop ----------
def test_start_polling_is_idempotent(sync, channel):
    channel.on("getEvent", event_result({}))
    assert sync.start_polling() is True
    assert sync.start_polling() is False
    sync.stop_polling()
    assert not sync.polling


def test_loop_starts_with_full_refresh_then_long_polls(sync, channel):
    channel.on("getEvent", event_result({}))
    sync.start_polling()
    assert wait_until(lambda: len(channel.calls_to("getEvent")) >= 3)
    sync.stop_polling()
    calls = channel.calls_to("getEvent")
    assert calls[0] == [False]
    assert all(c == [True] for c in calls[1:])


def test_loop_survives_failures(sync, channel):
    count = {"n": 0}

    def flaky(params):
        count["n"] += 1
        if count["n"] <= 2:
            raise ConnectionError("down")
        if count["n"] == 3:
            return event_result({1: {"type": "cameraStatus"}})  # malformed
        return event_result({1: {"cameraStatus": "IDLE"}})

    channel.on("getEvent", flaky)
    sync.start_polling()
    assert wait_until(lambda: sync.state.status == "IDLE")
    assert sync.polling
    sync.stop_polling()


def test_requested_full_refresh_is_honoured(sync, channel):
    channel.on("getEvent", event_result({}))
    sync.start_polling(initial_full_refresh=False)
    assert wait_until(lambda: len(channel.calls_to("getEvent")) >= 2)
    sync.request_full_refresh()
    assert wait_until(lambda: [False] in channel.calls_to("getEvent"))
    sync.stop_polling()


def test_poll_rate_is_capped_at_two_per_second(api, registry, channel):
    starts = []
    lock = threading.Lock()

    def slow_event(params):
        with lock:
            starts.append(time.monotonic())
        time.sleep(0.1)
        return event_result({})

    channel.on("getEvent", slow_event)
    sync = StateSynchronizer(api, registry, min_interval_s=0.5)
    try:
        sync.start_polling()
        assert wait_until(lambda: len(starts) >= 11, timeout=8.0)
    finally:
        sync.close()

    gaps = [b - a for a, b in zip(starts, starts[1:])][:10]
    assert len(gaps) == 10
    for gap in gaps:
        assert 0.495 <= gap <= 0.6, gaps


def test_slow_polls_are_not_delayed(api, registry, channel):
    starts = []

    def very_slow_event(params):
        starts.append(time.monotonic())
        time.sleep(0.15)
        return event_result({})

    channel.on("getEvent", very_slow_event)
    sync = StateSynchronizer(api, registry, min_interval_s=0.1)
    try:
        sync.start_polling()
        assert wait_until(lambda: len(starts) >= 4, timeout=3.0)
    finally:
        sync.close()
    gaps = [b - a for a, b in zip(starts, starts[1:])]
    assert all(g < 0.3 for g in gaps[:3]), gaps


# ---------- Failed full refresh ----------
def test_failed_full_refresh_keeps_options(sync, channel, registry):
    channel.on("getEvent", event_result(FULL_EVENT))
    sync.full_refresh()

    channel.on("getEvent", RpcResult(error=[500, "timeout"]))
    seen = []
    sync.add_listener(seen.append)
    assert sync.full_refresh() == set()

    assert registry["flash_mode"].options == ["off", "auto", "on"]
    assert {s.key for s in registry.available_settings()} >= {"flash_mode", "iso"}
    assert seen == []


def test_failed_full_refresh_is_retried(sync, channel, registry):
    channel.on("getEvent", event_result(FULL_EVENT))
    sync.full_refresh()

    count = {"n": 0}

    def first_fails(params):
        count["n"] += 1
        if count["n"] == 1:
            return RpcResult(error=[500, "timeout"])
        if params == [False]:
            return event_result(FULL_EVENT)
        return event_result({2: {"zoomPosition": 10}})

    channel.on("getEvent", first_fails)
    sync.start_polling()
    assert wait_until(lambda: len(channel.calls_to("getEvent")) >= 4)
    sync.stop_polling()

    calls = channel.calls_to("getEvent")
    # after the seeding call: the failed full refresh, then its retry
    assert calls[1:3] == [[False], [False]]
    assert registry["flash_mode"].options == ["off", "auto", "on"]


def test_full_refresh_callback_runs_after_success(sync, channel):
    done = []
    channel.on("getEvent", RpcResult(error=[500, "timeout"]))
    sync.request_full_refresh(on_done=lambda: done.append(1))
    sync.full_refresh()
    assert done == []

    channel.on("getEvent", event_result(FULL_EVENT))
    sync.full_refresh()
    sync.full_refresh()
    assert done == [1]
