import subprocess
import time
import logging

import psutil

from lrtools.schemas.command import CommandRequest, CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_RETURNCODE = 124


def kill_process_tree(pid: int):
    """结束进程及其所有子进程"""
    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    children = parent.children(recursive=True)
    for proc in children + [parent]:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue
    psutil.wait_procs(children + [parent], timeout=5)


def run_command(request: CommandRequest, echo: bool = True) -> CommandResult:
    """
    通过shell执行命令并收集输出

    Args:
        request: 命令及超时时间
        echo: 是否把输出打印到控制台

    Returns:
        CommandResult, 超时时整个进程树会被结束, returncode为124
    """
    if echo:
        print(f"[*] 执行命令: {request.command}")

    start_time = time.time()
    timed_out = False
    try:
        process = subprocess.Popen(
            request.command,
            shell=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace"
        )
    except OSError as e:
        logger.error(f"命令启动失败: {e}")
        return CommandResult(
            command=request.command,
            success=False,
            returncode=-1,
            stderr=str(e),
            duration=time.time() - start_time
        )

    try:
        stdout, stderr = process.communicate(timeout=request.timeout)
        returncode = process.returncode
    except subprocess.TimeoutExpired:
        timed_out = True
        logger.warning(f"命令执行超时({request.timeout}秒), 结束进程树: {process.pid}")
        kill_process_tree(process.pid)
        stdout, stderr = process.communicate()
        stderr = (stderr or "") + f"\n命令执行超时({request.timeout}秒)"
        returncode = TIMEOUT_RETURNCODE

    result = CommandResult(
        command=request.command,
        success=returncode == 0 and not timed_out,
        returncode=returncode,
        stdout=stdout or "",
        stderr=stderr or "",
        timed_out=timed_out,
        duration=round(time.time() - start_time, 3)
    )

    if echo:
        print_command_result(result)
    return result


def print_command_result(result: CommandResult):
    if result.stdout:
        print(result.stdout.rstrip())
    if result.stderr:
        print("[stderr]")
        print(result.stderr.rstrip())
    status = "超时" if result.timed_out else f"返回码 {result.returncode}"
    print(f"[*] 命令结束: {status}, 耗时 {result.duration:.1f} 秒")
