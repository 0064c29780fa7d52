"""
pktmon 命令封装

只负责拼装命令行并执行, 所有结果以 {success, stdout, stderr, returncode}
字典返回, 是否致命由调用方决定。
"""

import subprocess
import logging
from typing import List, Dict, Any, Optional

from lrtools.core.config import settings

logger = logging.getLogger(__name__)

IP_FILTER_NAME = "IR_IP_Filter"
PORT_FILTER_NAME = "IR_Port_Filter"


def run_pktmon_command(command: List[str], timeout: Optional[int] = None) -> Dict[str, Any]:
    """执行pktmon命令"""
    logger.debug(f"执行命令: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout or settings.pktmon_timeout
        )
        return {
            "success": result.returncode == 0,
            "stdout": result.stdout,
            "stderr": result.stderr,
            "returncode": result.returncode
        }
    except subprocess.TimeoutExpired:
        return {
            "success": False,
            "stdout": "",
            "stderr": "命令执行超时",
            "returncode": -1
        }
    except Exception as e:
        # pktmon不存在、无法启动或输出异常
        return {
            "success": False,
            "stdout": "",
            "stderr": str(e),
            "returncode": -1
        }


class PktmonClient:
    """Windows Packet Monitor (pktmon) 客户端"""

    def __init__(self, pktmon_path: Optional[str] = None, timeout: Optional[int] = None):
        self.pktmon_path = pktmon_path or settings.pktmon_path
        self.timeout = timeout or settings.pktmon_timeout

    def _run(self, *args: str) -> Dict[str, Any]:
        return run_pktmon_command([self.pktmon_path, *args], timeout=self.timeout)

    def add_ip_filter(self, ip: str) -> Dict[str, Any]:
        return self._run("filter", "add", IP_FILTER_NAME, "-i", ip)

    def add_port_filter(self, port: int) -> Dict[str, Any]:
        return self._run("filter", "add", PORT_FILTER_NAME, "-p", str(port))

    def remove_filters(self) -> Dict[str, Any]:
        """清除全部过滤器 (没有过滤器时同样返回成功或非零状态, 由调用方判断)"""
        return self._run("filter", "remove")

    def list_filters(self) -> Dict[str, Any]:
        return self._run("filter", "list")

    def start_capture(self, etl_file: str) -> Dict[str, Any]:
        # --pkt-size 0 表示抓取完整数据包
        return self._run("start", "--capture", "--pkt-size", "0", "--file-name", etl_file)

    def stop_capture(self) -> Dict[str, Any]:
        return self._run("stop")

    def convert_to_pcap(self, etl_file: str, pcap_file: str) -> Dict[str, Any]:
        return self._run("etl2pcap", etl_file, "--out", pcap_file)
