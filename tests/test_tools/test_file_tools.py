from pathlib import Path

import pytest

from turnkeeper.exceptions import ToolBlockedError, ToolExecutionError
from turnkeeper.tools import EditFileTool, ListDirectoryTool, ToolContext, ViewFileTool
from turnkeeper.tools.view_file import MAX_FILE_BYTES


@pytest.fixture
def context(tmp_path: Path) -> ToolContext:
    return ToolContext(workspace_root=tmp_path)


@pytest.mark.asyncio
async def test_view_file_returns_content(tmp_path: Path, context: ToolContext):
    (tmp_path / "notes.md").write_text("# Notes\nline two\n", encoding="utf-8")

    result = await ViewFileTool().call({"filePath": "notes.md"}, context)

    assert result == "# Notes\nline two\n"


@pytest.mark.asyncio
async def test_view_file_missing_file_raises(context: ToolContext):
    with pytest.raises(ToolExecutionError, match="File not found: missing.txt"):
        await ViewFileTool().call({"filePath": "missing.txt"}, context)


@pytest.mark.asyncio
async def test_view_file_rejects_directory(tmp_path: Path, context: ToolContext):
    (tmp_path / "src").mkdir()

    with pytest.raises(ToolExecutionError, match="Not a file"):
        await ViewFileTool().call({"filePath": "src"}, context)


@pytest.mark.asyncio
async def test_view_file_rejects_oversized_file(tmp_path: Path, context: ToolContext):
    (tmp_path / "big.log").write_text("x" * (MAX_FILE_BYTES + 1), encoding="utf-8")

    with pytest.raises(ToolExecutionError, match="File too large"):
        await ViewFileTool().call({"filePath": "big.log"}, context)


@pytest.mark.asyncio
async def test_view_file_refuses_paths_outside_workspace(tmp_path: Path):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")

    with pytest.raises(ToolBlockedError):
        await ViewFileTool().call({"filePath": "../secret.txt"}, ToolContext(workspace_root=workspace))


@pytest.mark.asyncio
async def test_list_directory_sorts_and_marks_directories(tmp_path: Path, context: ToolContext):
    (tmp_path / "b.txt").write_text("", encoding="utf-8")
    (tmp_path / "a.txt").write_text("", encoding="utf-8")
    (tmp_path / "lib").mkdir()

    result = await ListDirectoryTool().call({"dirPath": "./"}, context)

    assert result == ["a.txt", "b.txt", "lib/"]


@pytest.mark.asyncio
async def test_list_directory_missing_directory_raises(context: ToolContext):
    with pytest.raises(ToolExecutionError, match="Directory not found"):
        await ListDirectoryTool().call({"dirPath": "nowhere"}, context)


@pytest.mark.asyncio
async def test_edit_file_creates_parents_and_overwrites(tmp_path: Path, context: ToolContext):
    tool = EditFileTool()

    first = await tool.call({"filePath": "docs/readme.md", "content": "v1"}, context)
    second = await tool.call({"filePath": "docs/readme.md", "content": "version two"}, context)

    assert first == "File docs/readme.md edited successfully (2 chars)."
    assert second == "File docs/readme.md edited successfully (11 chars)."
    assert (tmp_path / "docs" / "readme.md").read_text(encoding="utf-8") == "version two"


def test_read_only_flags():
    assert ViewFileTool().is_read_only() is True
    assert ListDirectoryTool().is_read_only() is True
    assert EditFileTool().is_read_only() is False
