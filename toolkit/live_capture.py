#!/usr/bin/env python3
"""
Live Response 网络抓包脚本 (pktmon)

需要管理员权限, 抓包文件写入当前目录, 结束后用 getfile 下载。
"""

import sys
import os
import argparse
import logging

from pydantic import ValidationError

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lrtools.core.config import settings
from lrtools.schemas.capture import CaptureRequest, ALLOWED_DURATIONS
from lrtools.utils.pktmon import PktmonClient
from lrtools.utils.capture_controller import CaptureController

EXIT_FAILED = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="pktmon 网络抓包",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s
  %(prog)s --ip 10.0.0.5
  %(prog)s --ip 10.0.0.5 --port 445 --duration 300
  %(prog)s --list-filters
        """
    )
    parser.add_argument("--ip", dest="target_ip",
                        help="只抓取与该IP相关的流量")
    parser.add_argument("--port", dest="target_port", type=int,
                        help="只抓取该端口的流量 (1-65535)")
    parser.add_argument("--duration", dest="duration_seconds", type=int, default=60,
                        help=f"抓包时长(秒), 可选 {', '.join(str(d) for d in ALLOWED_DURATIONS)}")
    parser.add_argument("--output-dir",
                        help="输出目录, 默认为当前目录")
    parser.add_argument("--list-filters", action="store_true",
                        help="显示当前pktmon过滤器后退出")
    return parser


def main(argv=None, pktmon: PktmonClient = None, controller: CaptureController = None) -> int:
    """主函数"""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=settings.log_level)
    pktmon = pktmon or PktmonClient()

    if args.list_filters:
        result = pktmon.list_filters()
        print(result["stdout"] or result["stderr"])
        return 0 if result["success"] else EXIT_FAILED

    try:
        request = CaptureRequest(
            target_ip=args.target_ip,
            target_port=args.target_port,
            duration_seconds=args.duration_seconds
        )
    except ValidationError as e:
        print("❌ 参数错误:")
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            print(f"   {field}: {error['msg']}")
        return EXIT_CONFIG_ERROR

    controller = controller or CaptureController(pktmon, output_dir=args.output_dir)
    result = controller.run(request)
    return 0 if result.success else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
