#!/usr/bin/env python3
"""
执行命令并输出结果, 返回码与命令一致 (超时为124)
"""

import sys
import os
import argparse
import logging

from pydantic import ValidationError

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lrtools.core.config import settings
from lrtools.schemas.command import CommandRequest
from lrtools.utils.command_runner import run_command


def main(argv=None) -> int:
    """主函数"""
    parser = argparse.ArgumentParser(
        description="执行命令并输出结果",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
--timeout 应写在命令之前; 命令末尾的 "--timeout N" 同样会被识别。

Examples:
  %(prog)s --timeout 30 ipconfig /all
  %(prog)s netstat -ano --timeout 30
        """
    )
    parser.add_argument("command", nargs=argparse.REMAINDER,
                        help="要执行的命令")
    parser.add_argument("--timeout", type=int, default=settings.command_timeout,
                        help="超时时间(秒)")
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.log_level)

    command = list(args.command)
    timeout = args.timeout
    # REMAINDER会吞掉命令后面的选项
    if len(command) >= 2 and command[-2] == "--timeout" and command[-1].isdigit():
        timeout = int(command[-1])
        command = command[:-2]

    try:
        request = CommandRequest(command=" ".join(command), timeout=timeout)
    except ValidationError as e:
        print(f"❌ 参数错误: {e}")
        return 2

    result = run_command(request)
    return result.returncode


if __name__ == "__main__":
    sys.exit(main())
