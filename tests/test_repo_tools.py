import asyncio

import pytest

from sandbox_orchestrator.errors import PathEscapeError, ToolError
from sandbox_orchestrator.tools.repo import read_file, write_file


def test_write_then_read(tmp_path, log):
    written = asyncio.run(write_file("pkg/new/module.py", "x = 1\n", root=tmp_path, log=log))
    assert written == {"status": "ok", "path": "pkg/new/module.py", "content": "x = 1\n"}
    read = asyncio.run(read_file("pkg/new/module.py", root=tmp_path, log=log))
    assert read == {"path": "pkg/new/module.py", "content": "x = 1\n"}


def test_read_missing_file(tmp_path):
    with pytest.raises(ToolError, match="File not found"):
        asyncio.run(read_file("nope.txt", root=tmp_path))


def test_read_directory(tmp_path):
    (tmp_path / "dir").mkdir()
    with pytest.raises(ToolError, match="not a file"):
        asyncio.run(read_file("dir", root=tmp_path))


def test_read_binary_file(tmp_path):
    (tmp_path / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")
    with pytest.raises(ToolError, match="UTF-8"):
        asyncio.run(read_file("blob.bin", root=tmp_path))


def test_write_outside_root_is_refused(tmp_path):
    root = tmp_path / "repo"
    root.mkdir()
    with pytest.raises(PathEscapeError):
        asyncio.run(write_file("../escape.txt", "x", root=root))
    assert not (tmp_path / "escape.txt").exists()


def test_write_requires_path(tmp_path):
    with pytest.raises(ToolError):
        asyncio.run(write_file(None, "x", root=tmp_path))
