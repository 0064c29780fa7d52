#!/usr/bin/env python3
"""
为取证文件加密打包 (7-Zip, AES-256)
"""

import sys
import os
import argparse
import logging

from pydantic import ValidationError

# 添加项目根目录到Python路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from lrtools.core.config import settings
from lrtools.schemas.archive import ArchiveRequest
from lrtools.utils.archiver import protect_file


def main(argv=None) -> int:
    """主函数"""
    parser = argparse.ArgumentParser(description="使用7-Zip为文件加密打包")
    parser.add_argument("file_path", help="待打包的文件")
    parser.add_argument("--password", default=settings.archive_password,
                        help="压缩包密码")
    parser.add_argument("--output", dest="output_path",
                        help="输出zip路径, 默认为 <文件>.zip")
    args = parser.parse_args(argv)
    logging.basicConfig(level=settings.log_level)

    try:
        request = ArchiveRequest(
            file_path=args.file_path,
            password=args.password,
            output_path=args.output_path
        )
    except ValidationError as e:
        print(f"❌ 参数错误: {e}")
        return 2

    result = protect_file(request)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
