"""文件 / YAML 工具函数。"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# PNG 文件头固定 8 字节
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def load_yaml(path: str | Path) -> dict[str, Any]:
    """加载 YAML 文件并返回字典。

    Parameters
    ----------
    path:
        YAML 文件路径。

    Returns
    -------
    dict[str, Any]
        解析后的字典，空文件返回 ``{}``。

    Raises
    ------
    FileNotFoundError
        文件不存在。
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"YAML 文件不存在: {path}")
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def is_png(data: bytes | None) -> bool:
    """判断字节串是否为带完整签名的 PNG 数据。"""
    return bool(data) and data.startswith(PNG_SIGNATURE)


def clear_dir(path: Path) -> int:
    """删除目录下的所有文件（不递归），返回删除数量。目录不存在时返回 0。"""
    if not path.is_dir():
        return 0
    removed = 0
    for child in path.iterdir():
        if child.is_file():
            child.unlink(missing_ok=True)
            removed += 1
    return removed

