"""测试公共 fixtures。"""

from pathlib import Path

import pytest

from simcast.infra.file_utils import PNG_SIGNATURE


@pytest.fixture
def tmp_yaml(tmp_path: Path):
    """创建临时 YAML 文件的工厂 fixture。"""

    def _factory(name: str, content: str) -> Path:
        p = tmp_path / name
        p.write_text(content, encoding="utf-8")
        return p

    return _factory


@pytest.fixture
def png_bytes() -> bytes:
    """带合法签名的 PNG 字节（内容无需可解码）。"""
    return PNG_SIGNATURE + b"\x00\x00\x00\rIHDR" + b"\x00" * 17
