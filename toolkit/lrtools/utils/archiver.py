"""
使用7-Zip为取证文件加密打包

本机没有7-Zip时从官方地址下载独立版(7za), 用完即删除。
"""

import os
import shutil
import subprocess
import tempfile
import zipfile
import logging
from typing import List, Dict, Any, Optional

import requests

from lrtools.core.config import settings
from lrtools.schemas.archive import ArchiveRequest, ArchiveResult

logger = logging.getLogger(__name__)

SEVENZIP_EXECUTABLES = ("7za.exe", "7za", "7z.exe", "7z")


class ArchiveError(Exception):
    """打包失败"""


def download_sevenzip(target_dir: str, url: Optional[str] = None, timeout: Optional[int] = None) -> str:
    """下载并解压7-Zip独立版, 返回可执行文件路径"""
    url = url or settings.sevenzip_download_url
    zip_path = os.path.join(target_dir, "7zip.zip")

    print(f"[*] 下载7-Zip: {url}")
    try:
        response = requests.get(url, stream=True, timeout=timeout or settings.download_timeout)
        response.raise_for_status()
        with open(zip_path, 'wb') as f:
            for chunk in response.iter_content(chunk_size=65536):
                f.write(chunk)
    except requests.RequestException as e:
        raise ArchiveError(f"下载7-Zip失败: {e}")

    try:
        with zipfile.ZipFile(zip_path) as zf:
            zf.extractall(target_dir)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"7-Zip压缩包损坏: {e}")

    executable = find_sevenzip(target_dir)
    if not executable:
        raise ArchiveError(f"下载内容中未找到7-Zip可执行文件: {target_dir}")
    print(f"[+] 7-Zip已就绪: {executable}")
    return executable


def find_sevenzip(search_dir: str) -> Optional[str]:
    for root, _, files in os.walk(search_dir):
        for name in SEVENZIP_EXECUTABLES:
            if name in files:
                return os.path.join(root, name)
    return None


def is_same_path(source_path: str, archive_path: str) -> bool:
    """判断输出路径是否指向源文件(包括硬链接/符号链接)"""
    if os.path.normcase(os.path.abspath(source_path)) == os.path.normcase(os.path.abspath(archive_path)):
        return True
    if os.path.exists(archive_path):
        return os.path.samefile(source_path, archive_path)
    return False


def run_sevenzip_command(command: List[str], timeout: int = 600) -> Dict[str, Any]:
    """执行7-Zip命令"""
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout
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
        return {
            "success": False,
            "stdout": "",
            "stderr": str(e),
            "returncode": -1
        }


def protect_file(request: ArchiveRequest) -> ArchiveResult:
    """用密码保护的zip打包单个文件"""
    source_path = request.file_path
    archive_path = request.output_path or f"{source_path}.zip"
    work_dir = None

    try:
        if not os.path.isfile(source_path):
            raise ArchiveError(f"文件不存在: {source_path}")
        if is_same_path(source_path, archive_path):
            raise ArchiveError(f"输出路径不能与待打包文件相同: {archive_path}")
        print(f"[*] 待打包文件: {source_path} ({os.path.getsize(source_path)} bytes)")

        executable = settings.sevenzip_path
        if executable and os.path.exists(executable):
            print(f"[*] 使用本地7-Zip: {executable}")
        else:
            work_dir = tempfile.mkdtemp(prefix="lr_7zip_")
            executable = download_sevenzip(work_dir)

        if os.path.exists(archive_path):
            os.remove(archive_path)

        result = run_sevenzip_command([
            executable, "a", "-tzip", f"-p{request.password}", "-mem=AES256", "-y",
            archive_path, source_path
        ])
        if not result["success"]:
            raise ArchiveError(f"7-Zip打包失败(返回码 {result['returncode']}): {(result['stderr'] or result['stdout']).strip()}")

        if not os.path.exists(archive_path):
            raise ArchiveError(f"打包完成但未找到输出文件: {archive_path}")

        archive_size = os.path.getsize(archive_path)
        print(f"✅ 打包完成: {archive_path} ({archive_size} bytes)")
        print("    压缩包已使用密码保护(AES-256)")
        return ArchiveResult(
            success=True,
            source_path=source_path,
            archive_path=archive_path,
            archive_size=archive_size
        )
    except ArchiveError as e:
        print(f"❌ {e}")
        return ArchiveResult(success=False, source_path=source_path, error=str(e))
    finally:
        if work_dir:
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.info(f"已删除临时7-Zip目录: {work_dir}")
