import threading

import pytest
from pydantic import ValidationError

from lrtools.schemas.capture import CaptureRequest, OUTCOME_OK, OUTCOME_FATAL, OUTCOME_DEGRADED
from lrtools.utils.capture_controller import capture_file_names, clear_filters

from conftest import FakePktmon, FIXED_TIME, etl_name, pcap_name, command_result


def test_capture_file_names_share_timestamp():
    etl, pcap = capture_file_names(FIXED_TIME)
    assert etl == "IR_Capture_20240501_134530.etl"
    assert pcap == "IR_Capture_20240501_134530.pcap"


@pytest.mark.parametrize("duration", [0, 30, 59, 61, 120, 600, 3600, -60])
def test_invalid_duration_rejected_before_any_pktmon_call(duration, pktmon):
    with pytest.raises(ValidationError):
        CaptureRequest(duration_seconds=duration)
    assert pktmon.calls == []


def test_no_filters_end_to_end(workdir, pktmon, make_controller, waits):
    result = make_controller(pktmon).run(CaptureRequest())

    assert result.success is True
    assert result.outcome == OUTCOME_OK
    assert result.etl_path == etl_name()
    assert result.pcap_path == pcap_name()
    assert result.duration_seconds == 60
    assert result.filtered_ip is None
    assert result.filtered_port is None
    assert result.filter_count == 0
    assert result.error is None
    assert result.etl_size == 128
    assert result.pcap_size == 64

    assert pktmon.names() == ["filter_remove", "start", "stop", "convert", "filter_remove"]
    assert pktmon.filters == []
    assert pktmon.capturing is False
    assert sum(waits) == 60


def test_ip_and_port_filters(workdir, pktmon, make_controller):
    request = CaptureRequest(target_ip="10.0.0.5", target_port=445, duration_seconds=300)
    result = make_controller(pktmon).run(request)

    names = pktmon.names()
    start_index = names.index("start")
    assert names[:start_index].count("filter_remove") == 1
    assert [c for c in pktmon.calls[:start_index] if c[0].startswith("filter_add")] == [
        ("filter_add_ip", "10.0.0.5"),
        ("filter_add_port", 445),
    ]
    # 抓包结束后只有一次批量清除
    assert names[names.index("convert"):].count("filter_remove") == 1
    assert result.filter_count == 2
    assert result.filtered_ip == "10.0.0.5"
    assert result.filtered_port == 445
    assert result.duration_seconds == 300
    assert pktmon.filters == []


@pytest.mark.parametrize("ip, port, expected", [
    (None, None, 0),
    ("192.168.1.10", None, 1),
    (None, 3389, 1),
    ("192.168.1.10", 3389, 2),
    ("   ", 53, 1),
])
def test_filter_count_matches_targets(workdir, make_controller, ip, port, expected):
    pktmon = FakePktmon()
    result = make_controller(pktmon).run(CaptureRequest(target_ip=ip, target_port=port))

    added = [c for c in pktmon.calls if c[0].startswith("filter_add")]
    assert len(added) == expected
    assert result.filter_count == expected


def test_start_failure_is_fatal_and_cleans_up(workdir, make_controller, waits, capsys):
    pktmon = FakePktmon(fail={"start"})
    result = make_controller(pktmon).run(CaptureRequest(target_ip="10.0.0.5"))

    assert result.success is False
    assert result.outcome == OUTCOME_FATAL
    assert "管理员" in result.error
    assert result.etl_path is None
    assert result.pcap_path is None
    assert waits == []
    assert "convert" not in pktmon.names()
    # 中止路径: 尽力stop和清除, 随后统一清除过滤器
    assert pktmon.names() == [
        "filter_remove", "filter_add_ip", "start", "stop", "filter_remove", "filter_remove"
    ]
    assert pktmon.filters == []
    assert "抓包失败" in capsys.readouterr().out


def test_missing_trace_is_fatal(workdir, make_controller):
    pktmon = FakePktmon(write_etl=False)
    result = make_controller(pktmon).run(CaptureRequest())

    assert result.success is False
    assert result.outcome == OUTCOME_FATAL
    assert "artifact missing" in result.error
    assert "convert" not in pktmon.names()
    assert pktmon.names()[-2:] == ["filter_remove", "filter_remove"]
    assert pktmon.filters == []


def test_conversion_failure_is_degraded(workdir, make_controller):
    pktmon = FakePktmon(fail={"convert"})
    result = make_controller(pktmon).run(CaptureRequest(target_port=443))

    assert result.success is True
    assert result.outcome == OUTCOME_DEGRADED
    assert result.etl_path == etl_name()
    assert result.pcap_path is None
    assert "pcap" in result.error
    assert pktmon.names()[-1] == "filter_remove"
    assert (workdir / etl_name()).exists()


def test_conversion_without_output_file_is_degraded(workdir, make_controller):
    pktmon = FakePktmon(write_pcap=False)
    result = make_controller(pktmon).run(CaptureRequest())

    assert result.outcome == OUTCOME_DEGRADED
    assert result.pcap_path is None
    assert result.etl_path == etl_name()


def test_cleanup_errors_are_ignored_on_abort(workdir, make_controller):
    pktmon = FakePktmon(fail={"start", "filter_remove"}, raise_on={"stop"})
    result = make_controller(pktmon).run(CaptureRequest())

    assert result.outcome == OUTCOME_FATAL
    assert pktmon.names().count("filter_remove") == 3


def test_unexpected_error_becomes_fatal_result(workdir, make_controller):
    pktmon = FakePktmon(raise_on={"convert"})
    result = make_controller(pktmon).run(CaptureRequest())

    assert result.outcome == OUTCOME_FATAL
    assert "convert exploded" in result.error
    assert pktmon.names()[-1] == "filter_remove"


def test_output_dir_is_used_for_artifacts(tmp_path, make_controller):
    pktmon = FakePktmon()
    result = make_controller(pktmon, output_dir=str(tmp_path)).run(CaptureRequest())

    assert result.etl_path == str(tmp_path / etl_name())
    assert result.pcap_path == str(tmp_path / pcap_name())
    assert pktmon.calls[1] == ("start", str(tmp_path / etl_name()))


@pytest.mark.parametrize("duration, expected_steps", [
    (60, [6.0] * 10),
    (300, [10] * 30),
    (900, [10] * 90),
])
def test_progress_cadence(workdir, make_controller, waits, duration, expected_steps):
    make_controller(FakePktmon()).run(CaptureRequest(duration_seconds=duration))

    assert waits == expected_steps
    assert sum(waits) == duration


def test_progress_is_printed(workdir, make_controller, capsys):
    make_controller(FakePktmon()).run(CaptureRequest())

    out = capsys.readouterr().out
    assert "剩余时间: 54 秒" in out
    assert "剩余时间: 0 秒" in out
    assert "✅ 抓包完成" in out


def test_cancelled_wait_still_stops_and_converts(workdir, make_controller):
    cancel_event = threading.Event()
    steps = []

    def sleep(seconds):
        steps.append(seconds)
        if len(steps) == 3:
            cancel_event.set()
        return cancel_event.is_set()

    pktmon = FakePktmon()
    result = make_controller(pktmon, sleep=sleep).run(CaptureRequest(), cancel_event=cancel_event)

    assert len(steps) == 3
    assert result.cancelled is True
    assert result.outcome == OUTCOME_OK
    assert pktmon.names() == ["filter_remove", "start", "stop", "convert", "filter_remove"]


def test_default_wait_uses_cancel_event(workdir):
    from lrtools.utils.capture_controller import CaptureController

    cancel_event = threading.Event()
    cancel_event.set()
    pktmon = FakePktmon()
    controller = CaptureController(pktmon, output_dir="", clock=lambda: FIXED_TIME)
    result = controller.run(CaptureRequest(duration_seconds=900), cancel_event=cancel_event)

    assert result.cancelled is True
    assert result.success is True


def test_keyboard_interrupt_unwinds_and_reraises(workdir, make_controller):
    def sleep(seconds):
        raise KeyboardInterrupt

    pktmon = FakePktmon()
    with pytest.raises(KeyboardInterrupt):
        make_controller(pktmon, sleep=sleep).run(CaptureRequest())

    assert pktmon.capturing is False
    assert pktmon.names()[-2:] == ["filter_remove", "filter_remove"]


class _RemoveOnly:
    def __init__(self, result):
        self.result = result

    def remove_filters(self):
        return self.result


@pytest.mark.parametrize("result, expected, level", [
    (command_result(True), True, None),
    (command_result(False, stderr="no filters", returncode=2), False, "WARNING"),
    (command_result(False, stderr="not found", returncode=-1), False, "ERROR"),
])
def test_clear_filters_reports_by_exit_status(caplog, result, expected, level):
    with caplog.at_level("DEBUG"):
        assert clear_filters(_RemoveOnly(result)) is expected

    levels = [r.levelname for r in caplog.records]
    if level is None:
        assert levels == []
    else:
        assert levels == [level]


def test_result_is_frozen(workdir, make_controller):
    result = make_controller(FakePktmon()).run(CaptureRequest())
    with pytest.raises(ValidationError):
        result.success = False


def test_filter_reset_exception_does_not_escape(workdir, make_controller, caplog):
    pktmon = FakePktmon(raise_on={"filter_remove"})
    with caplog.at_level("ERROR"):
        result = make_controller(pktmon).run(CaptureRequest(target_port=445))

    assert result.success is True
    assert result.outcome == OUTCOME_OK
    assert pktmon.names().count("filter_remove") == 2
    assert "filter_remove exploded" in caplog.text


def test_filter_setup_exception_is_fatal(workdir, make_controller, waits):
    pktmon = FakePktmon(raise_on={"filter_add_ip"})
    result = make_controller(pktmon).run(CaptureRequest(target_ip="10.0.0.5", target_port=445))

    assert result.success is False
    assert result.outcome == OUTCOME_FATAL
    assert "filter_add_ip exploded" in result.error
    assert "start" not in pktmon.names()
    assert waits == []
    assert pktmon.names()[-1] == "filter_remove"
    assert pktmon.filters == []


def test_teardown_exception_keeps_result(workdir, make_controller):
    pktmon = FakePktmon()
    removes = []
    original_remove = pktmon.remove_filters

    def remove_filters():
        removes.append(1)
        if len(removes) == 2:
            raise RuntimeError("teardown exploded")
        return original_remove()

    pktmon.remove_filters = remove_filters
    result = make_controller(pktmon).run(CaptureRequest())

    assert len(removes) == 2
    assert result.outcome == OUTCOME_OK
    assert result.pcap_path == pcap_name()


def test_clear_filters_survives_client_exception(caplog):
    class _Exploding:
        def remove_filters(self):
            raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    with caplog.at_level("ERROR"):
        assert clear_filters(_Exploding()) is False
    assert "invalid start byte" in caplog.text
