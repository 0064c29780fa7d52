"""
pktmon 抓包控制器

流程: 清空过滤器 -> 添加过滤器 -> 开始抓包 -> 定时等待 -> 停止抓包
      -> 检查etl文件 -> 转换为pcap -> 清空过滤器 -> 汇总结果

无论成功与否, 退出前都会清空pktmon过滤器; 致命错误时还会尽力停止抓包。
"""

import os
import threading
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from lrtools.core.config import settings
from lrtools.schemas.capture import (
    CaptureRequest, CaptureResult, OUTCOME_OK, OUTCOME_FATAL, OUTCOME_DEGRADED
)
from lrtools.utils.pktmon import PktmonClient

logger = logging.getLogger(__name__)

CAPTURE_PREFIX = "IR_Capture"


class CaptureAborted(Exception):
    """致命错误, 终止剩余阶段"""


def capture_file_names(timestamp: datetime) -> tuple:
    """返回 (etl文件名, pcap文件名), 两者共用同一个时间戳"""
    stamp = timestamp.strftime('%Y%m%d_%H%M%S')
    return f"{CAPTURE_PREFIX}_{stamp}.etl", f"{CAPTURE_PREFIX}_{stamp}.pcap"


def clear_filters(pktmon: PktmonClient) -> bool:
    """
    清空pktmon过滤器, 从不抛出异常

    退出码为0时静默; 非零退出码(例如本来就没有过滤器)记录警告;
    无法启动pktmon或客户端抛出异常时记录错误。
    """
    try:
        result = pktmon.remove_filters()
    except Exception as e:
        logger.error(f"清空过滤器异常: {e}")
        return False
    if result["success"]:
        return True
    if result["returncode"] == -1:
        logger.error(f"清空过滤器失败: {result['stderr']}")
    else:
        logger.warning(f"清空过滤器返回 {result['returncode']}: {(result['stderr'] or result['stdout']).strip()}")
    return False


def setup_filters(pktmon: PktmonClient, request: CaptureRequest) -> int:
    """按请求添加IP/端口过滤器, 返回成功添加的数量"""
    filter_count = 0

    if request.target_ip:
        result = pktmon.add_ip_filter(request.target_ip)
        if result["success"]:
            filter_count += 1
            print(f"[+] 已添加IP过滤器: {request.target_ip}")
        else:
            print(f"[!] 添加IP过滤器失败: {result['stderr'].strip()}")

    if request.target_port:
        result = pktmon.add_port_filter(request.target_port)
        if result["success"]:
            filter_count += 1
            print(f"[+] 已添加端口过滤器: {request.target_port}")
        else:
            print(f"[!] 添加端口过滤器失败: {result['stderr'].strip()}")

    if filter_count == 0:
        print("[*] 未设置过滤器, 将抓取全部流量")
    else:
        print(f"[*] 共添加 {filter_count} 个过滤器")
    return filter_count


@contextmanager
def capture_filters(pktmon: PktmonClient):
    """进入时清空过滤器, 退出时(包括异常路径)再次清空"""
    clear_filters(pktmon)
    try:
        yield
    finally:
        clear_filters(pktmon)
        print("[*] 过滤器已清除")


@dataclass
class CaptureRun:
    """单次抓包的可变状态, 最终转换为不可变的 CaptureResult"""
    etl_path: str
    pcap_path: str
    filter_count: int = 0
    started: bool = False
    cancelled: bool = False
    converted: bool = False
    error: Optional[str] = None
    conversion_error: Optional[str] = None


class CaptureController:
    """pktmon抓包控制器"""

    def __init__(
        self,
        pktmon: Optional[PktmonClient] = None,
        output_dir: Optional[str] = None,
        progress_interval_cap: Optional[int] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Optional[Callable[[float], bool]] = None,
    ):
        self.pktmon = pktmon or PktmonClient()
        self.output_dir = settings.output_dir if output_dir is None else output_dir
        self.progress_interval_cap = progress_interval_cap or settings.progress_interval_cap
        self.clock = clock
        # sleep(秒数) 返回True表示等待被取消; 默认使用取消事件的wait
        self.sleep = sleep

    def _artifact_path(self, file_name: str) -> str:
        if not self.output_dir:
            return file_name
        return os.path.join(self.output_dir, file_name)

    def run(self, request: CaptureRequest, cancel_event: Optional[threading.Event] = None) -> CaptureResult:
        """执行一次完整的抓包流程, 总是返回结果而不是抛出异常"""
        cancel_event = cancel_event or threading.Event()
        etl_name, pcap_name = capture_file_names(self.clock())
        run = CaptureRun(etl_path=self._artifact_path(etl_name), pcap_path=self._artifact_path(pcap_name))

        print("=" * 50)
        print("[*] pktmon 网络抓包")
        print(f"    目标IP: {request.target_ip or '全部'}")
        print(f"    目标端口: {request.target_port or '全部'}")
        print(f"    时长: {request.duration_seconds} 秒")
        print("=" * 50)

        with capture_filters(self.pktmon):
            try:
                run.filter_count = setup_filters(self.pktmon, request)
                self._start(run)
                run.cancelled = self._wait(request.duration_seconds, cancel_event)
                self._stop()
                self._check_artifact(run)
                self._convert(run)
            except CaptureAborted as e:
                run.error = str(e)
                print(f"[!] 抓包失败: {e}")
                self._unwind(run)
            except KeyboardInterrupt:
                self._unwind(run)
                raise
            except Exception as e:
                logger.exception("抓包过程出现异常")
                run.error = f"抓包过程出现异常: {e}"
                print(f"[!] {run.error}")
                self._unwind(run)

        result = self._build_result(request, run)
        self._print_summary(result)
        return result

    def _start(self, run: CaptureRun):
        print(f"[*] 开始抓包, 输出文件: {run.etl_path}")
        result = self.pktmon.start_capture(run.etl_path)
        if not result["success"]:
            detail = (result["stderr"] or result["stdout"]).strip()
            raise CaptureAborted(
                f"pktmon启动失败(返回码 {result['returncode']}), 请确认以管理员权限运行: {detail}"
            )
        run.started = True

    def _wait(self, duration: int, cancel_event: threading.Event) -> bool:
        """阻塞等待duration秒并定期输出剩余时间, 被取消时返回True"""
        interval = min(self.progress_interval_cap, duration / 10)
        wait = self.sleep or cancel_event.wait
        remaining = duration

        while remaining > 0:
            step = min(interval, remaining)
            if wait(step) or cancel_event.is_set():
                print(f"[!] 抓包被取消, 剩余 {remaining:.0f} 秒")
                return True
            remaining -= step
            print(f"    剩余时间: {remaining:.0f} 秒")
        return False

    def _stop(self):
        print("[*] 停止抓包...")
        result = self.pktmon.stop_capture()
        if not result["success"]:
            logger.warning(f"pktmon stop 返回 {result['returncode']}: {result['stderr'].strip()}")

    def _check_artifact(self, run: CaptureRun):
        if not os.path.exists(run.etl_path):
            raise CaptureAborted(f"抓包文件缺失(artifact missing): {run.etl_path}")

    def _convert(self, run: CaptureRun):
        """etl转pcap, 失败不致命"""
        print("[*] 转换为pcap格式...")
        result = self.pktmon.convert_to_pcap(run.etl_path, run.pcap_path)
        if not result["success"]:
            run.conversion_error = f"pcap转换失败(返回码 {result['returncode']}): {(result['stderr'] or result['stdout']).strip()}"
        elif not os.path.exists(run.pcap_path):
            run.conversion_error = f"pcap转换后文件不存在: {run.pcap_path}"
        else:
            run.converted = True
            return
        print(f"[!] {run.conversion_error}, 保留原始etl文件")

    def _unwind(self, run: CaptureRun):
        """致命错误后尽力停止抓包并清空过滤器, 忽略二次错误"""
        for action in (self.pktmon.stop_capture, self.pktmon.remove_filters):
            try:
                action()
            except Exception as e:
                logger.debug(f"清理时忽略错误: {e}")

    def _build_result(self, request: CaptureRequest, run: CaptureRun) -> CaptureResult:
        etl_exists = os.path.exists(run.etl_path)
        pcap_exists = run.converted and os.path.exists(run.pcap_path)

        if run.error:
            outcome = OUTCOME_FATAL
            error = run.error
        elif not pcap_exists:
            outcome = OUTCOME_DEGRADED
            error = run.conversion_error
        else:
            outcome = OUTCOME_OK
            error = None

        return CaptureResult(
            success=outcome != OUTCOME_FATAL,
            outcome=outcome,
            pcap_path=run.pcap_path if pcap_exists else None,
            etl_path=run.etl_path if etl_exists else None,
            duration_seconds=request.duration_seconds,
            filtered_ip=request.target_ip,
            filtered_port=request.target_port,
            filter_count=run.filter_count,
            etl_size=os.path.getsize(run.etl_path) if etl_exists else None,
            pcap_size=os.path.getsize(run.pcap_path) if pcap_exists else None,
            cancelled=run.cancelled,
            error=error,
        )

    def _print_summary(self, result: CaptureResult):
        print("=" * 50)
        if not result.success:
            print(f"❌ 抓包失败: {result.error}")
        elif result.outcome == OUTCOME_DEGRADED:
            print("⚠️  抓包完成, 但pcap转换失败")
        else:
            print("✅ 抓包完成")
        if result.etl_path:
            print(f"    ETL文件: {result.etl_path} ({result.etl_size} bytes)")
        if result.pcap_path:
            print(f"    PCAP文件: {result.pcap_path} ({result.pcap_size} bytes, 可用Wireshark打开)")
        if result.success:
            print("    使用 Live Response 的 getfile 命令下载上述文件")
        print("=" * 50)
