from datetime import datetime

import pytest

from lrtools.utils.capture_controller import CaptureController

FIXED_TIME = datetime(2024, 5, 1, 13, 45, 30)
FIXED_STAMP = "20240501_134530"


def command_result(success=True, stdout="", stderr="", returncode=None):
    if returncode is None:
        returncode = 0 if success else 1
    return {"success": success, "stdout": stdout, "stderr": stderr, "returncode": returncode}


class FakePktmon:
    """记录调用顺序的pktmon替身, 可按操作配置失败"""

    def __init__(self, fail=(), write_etl=True, write_pcap=True, raise_on=()):
        self.calls = []
        self.fail = set(fail)
        self.raise_on = set(raise_on)
        self.write_etl = write_etl
        self.write_pcap = write_pcap
        self.filters = []
        self.capturing = False
        self.etl_file = None

    def _result(self, name):
        if name in self.raise_on:
            raise RuntimeError(f"{name} exploded")
        if name in self.fail:
            return command_result(False, stderr=f"{name} failed", returncode=5)
        return command_result(True, stdout=f"{name} ok")

    def add_ip_filter(self, ip):
        self.calls.append(("filter_add_ip", ip))
        result = self._result("filter_add_ip")
        if result["success"]:
            self.filters.append(("ip", ip))
        return result

    def add_port_filter(self, port):
        self.calls.append(("filter_add_port", port))
        result = self._result("filter_add_port")
        if result["success"]:
            self.filters.append(("port", port))
        return result

    def remove_filters(self):
        self.calls.append(("filter_remove",))
        result = self._result("filter_remove")
        if result["success"]:
            self.filters = []
        return result

    def list_filters(self):
        self.calls.append(("filter_list",))
        result = self._result("filter_list")
        result["stdout"] = "\n".join(f"{kind} {value}" for kind, value in self.filters) or "No filters"
        return result

    def start_capture(self, etl_file):
        self.calls.append(("start", etl_file))
        result = self._result("start")
        if result["success"]:
            self.capturing = True
            self.etl_file = etl_file
        return result

    def stop_capture(self):
        self.calls.append(("stop",))
        result = self._result("stop")
        if self.capturing and self.write_etl:
            with open(self.etl_file, "wb") as f:
                f.write(b"\x00" * 128)
        self.capturing = False
        return result

    def convert_to_pcap(self, etl_file, pcap_file):
        self.calls.append(("convert", etl_file, pcap_file))
        result = self._result("convert")
        if result["success"] and self.write_pcap:
            with open(pcap_file, "wb") as f:
                f.write(b"\xd4\xc3\xb2\xa1" + b"\x00" * 60)
        return result

    def names(self):
        return [call[0] for call in self.calls]


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def pktmon():
    return FakePktmon()


@pytest.fixture
def waits():
    return []


@pytest.fixture
def make_controller(waits):
    def factory(pktmon, output_dir="", **kwargs):
        kwargs.setdefault("sleep", waits.append)
        return CaptureController(
            pktmon,
            output_dir=output_dir,
            progress_interval_cap=10,
            clock=lambda: FIXED_TIME,
            **kwargs
        )
    return factory


def etl_name():
    return f"IR_Capture_{FIXED_STAMP}.etl"


def pcap_name():
    return f"IR_Capture_{FIXED_STAMP}.pcap"


