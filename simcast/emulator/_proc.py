"""外部命令执行 — 基于 asyncio 子进程。

所有 simctl / adb / osascript / screencapture 调用都经由 :func:`run`
或 :func:`run_bytes`。调用只挂起当前协程，不阻塞事件循环，
一台设备的慢命令不会拖慢其他设备的采集 tick。
"""

from __future__ import annotations

import asyncio
import os

from loguru import logger

from simcast.infra.exceptions import CommandError


async def run(*cmd: str | os.PathLike[str], timeout: float | None = None) -> str:
    """执行外部命令并返回 UTF-8 解码后的 stdout。

    Parameters
    ----------
    cmd:
        命令及参数，直接传给 ``exec``（不经过 shell）。
    timeout:
        超时秒数，超时后强杀子进程。None 表示不限时。

    Raises
    ------
    CommandError
        可执行文件不存在、退出码非零或超时。
    """
    out = await run_bytes(*cmd, timeout=timeout)
    return out.decode("utf-8", errors="replace")


async def run_bytes(*cmd: str | os.PathLike[str], timeout: float | None = None) -> bytes:
    """执行外部命令并原样返回 stdout 字节（用于截图数据）。

    Raises
    ------
    CommandError
        同 :func:`run`。
    """
    argv = [os.fspath(c) for c in cmd]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandError(argv, stderr=str(exc)) from exc

    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        kill(proc)
        await proc.wait()
        raise CommandError(argv, stderr=f"超时 ({timeout}s)") from exc
    except asyncio.CancelledError:
        # 会话停止时取消的 tick 不能留下孤儿进程
        kill(proc)
        raise

    if proc.returncode != 0:
        raise CommandError(
            argv,
            returncode=proc.returncode,
            stderr=err.decode("utf-8", errors="replace").strip(),
        )
    return out


def kill(proc: asyncio.subprocess.Process) -> None:
    """强杀子进程；已退出时静默返回。"""
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        logger.debug("子进程已退出: pid={}", proc.pid)
