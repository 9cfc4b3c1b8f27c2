"""Filesystem tools."""

import shutil
from pathlib import Path

from pydantic import BaseModel, Field

from bazinga.errors import ResourceError
from bazinga.tools.base import FileChange, ToolContext, ToolDefinition
from bazinga.utils.logging import get_logger

logger = get_logger(__name__)


class ReadFileInput(BaseModel):
    file_path: str = Field(..., description="The path to the file to read")


class WriteFileInput(BaseModel):
    file_path: str = Field(..., description="The path to the file to write")
    content: str = Field(..., description="The content to write to the file")


class CreateFileInput(BaseModel):
    file_path: str = Field(..., description="The path of the new file")
    content: str = Field(..., description="The initial content of the file")


class EditFileInput(BaseModel):
    file_path: str = Field(..., description="The path to the file to edit")
    old_text: str = Field(..., description="The exact text to replace")
    new_text: str = Field(..., description="The replacement text")


class EditOperation(BaseModel):
    old_text: str = Field(..., description="The exact text to replace")
    new_text: str = Field(..., description="The replacement text")


class MultiEditFileInput(BaseModel):
    file_path: str = Field(..., description="The path to the file to edit")
    edits: list[EditOperation] = Field(..., min_length=1, description="Edits applied in order")


class MoveFileInput(BaseModel):
    source_path: str = Field(..., description="The file to move")
    dest_path: str = Field(..., description="The destination path")


class CopyFileInput(BaseModel):
    source_path: str = Field(..., description="The file to copy")
    dest_path: str = Field(..., description="The destination path")


class DeleteFileInput(BaseModel):
    file_path: str = Field(..., description="The file to delete")


class CreateDirInput(BaseModel):
    dir_path: str = Field(..., description="The directory to create")


class DeleteDirInput(BaseModel):
    dir_path: str = Field(..., description="The directory to delete")
    recursive: bool = Field(False, description="Delete non-empty directories")


class ListFilesInput(BaseModel):
    directory: str | None = Field(None, description="Directory to list (defaults to the project root)")


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ResourceError(f"file {path} does not exist") from e
    except IsADirectoryError as e:
        raise ResourceError(f"path {path} is a directory") from e
    except UnicodeDecodeError as e:
        raise ResourceError(f"file {path} is not valid UTF-8 text") from e
    except OSError as e:
        raise ResourceError(f"failed to read file {path}: {e}") from e


def _previous_content(path: Path) -> str:
    """Existing text for diff display; undecodable bytes are replaced."""
    try:
        return path.read_text(encoding="utf-8", errors="replace") if path.is_file() else ""
    except OSError as e:
        raise ResourceError(f"failed to read file {path}: {e}") from e


def _write_text(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ResourceError(f"failed to write file {path}: {e}") from e


async def read_file(params: ReadFileInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.file_path)
    content = _read_text(path)
    lines = content.count("\n") + (1 if content and not content.endswith("\n") else 0)
    return f"File: {ctx.display_path(path)}\nLines: {lines}\nContent:\n\n{content}"


async def write_file(params: WriteFileInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.file_path)
    old_content = _previous_content(path)
    _write_text(path, params.content)
    ctx.notify(FileChange(ctx.display_path(path), "write", old_content, params.content))
    return f"File {params.file_path} written successfully ({len(params.content.encode())} bytes)"


async def create_file(params: CreateFileInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.file_path)
    if path.exists():
        raise ResourceError(f"file {params.file_path} already exists")
    _write_text(path, params.content)
    ctx.notify(FileChange(ctx.display_path(path), "create", "", params.content))
    return f"File {params.file_path} created successfully ({len(params.content.encode())} bytes)"


async def edit_file(params: EditFileInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.file_path)
    content = _read_text(path)
    if params.old_text not in content:
        raise ResourceError(f"old text not found in file {params.file_path}")

    updated = content.replace(params.old_text, params.new_text, 1)
    _write_text(path, updated)
    ctx.notify(FileChange(ctx.display_path(path), "edit", content, updated))
    return f"File {params.file_path} edited successfully"


async def multi_edit_file(params: MultiEditFileInput, ctx: ToolContext) -> str:
    """Apply edits sequentially to an in-memory buffer; write only if all matched."""
    path = ctx.resolve(params.file_path)
    original = _read_text(path)

    buffer = original
    for i, edit in enumerate(params.edits, start=1):
        if edit.old_text not in buffer:
            raise ResourceError(f"edit {i}: old text not found in file")
        buffer = buffer.replace(edit.old_text, edit.new_text, 1)

    if buffer == original:
        return f"File {params.file_path}: no changes needed"

    _write_text(path, buffer)
    ctx.notify(FileChange(ctx.display_path(path), "edit", original, buffer))
    return f"File {params.file_path}: applied {len(params.edits)} edits successfully"


def _check_transfer(ctx: ToolContext, source_path: str, dest_path: str) -> tuple[Path, Path]:
    source = ctx.resolve(source_path)
    dest = ctx.resolve(dest_path)
    if not source.exists():
        raise ResourceError(f"source file {source_path} does not exist")
    if dest.exists():
        raise ResourceError(f"destination file {dest_path} already exists")
    dest.parent.mkdir(parents=True, exist_ok=True)
    return source, dest


async def move_file(params: MoveFileInput, ctx: ToolContext) -> str:
    source, dest = _check_transfer(ctx, params.source_path, params.dest_path)
    try:
        shutil.move(source, dest)
    except OSError as e:
        raise ResourceError(f"failed to move file from {params.source_path} to {params.dest_path}: {e}") from e

    ctx.notify(FileChange(f"{ctx.display_path(source)} -> {ctx.display_path(dest)}", "move"))
    return f"File moved from {params.source_path} to {params.dest_path}"


async def copy_file(params: CopyFileInput, ctx: ToolContext) -> str:
    source, dest = _check_transfer(ctx, params.source_path, params.dest_path)
    if source.is_dir():
        raise ResourceError(f"source {params.source_path} is a directory, use copy_dir for directories")
    try:
        shutil.copy2(source, dest)
    except OSError as e:
        raise ResourceError(f"failed to copy file to {params.dest_path}: {e}") from e

    ctx.notify(FileChange(ctx.display_path(dest), "copy", "", ""))
    return f"File copied from {params.source_path} to {params.dest_path} ({dest.stat().st_size} bytes)"


async def delete_file(params: DeleteFileInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.file_path)
    if not path.exists():
        raise ResourceError(f"file {params.file_path} does not exist")
    if path.is_dir():
        raise ResourceError(f"path {params.file_path} is a directory, use delete_dir for directories")

    old_content = _previous_content(path)
    try:
        path.unlink()
    except OSError as e:
        raise ResourceError(f"failed to delete file {params.file_path}: {e}") from e

    ctx.notify(FileChange(ctx.display_path(path), "delete", old_content, ""))
    return f"File {params.file_path} deleted successfully"


async def create_dir(params: CreateDirInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.dir_path)
    if path.exists():
        raise ResourceError(f"directory {params.dir_path} already exists")
    try:
        path.mkdir(parents=True)
    except OSError as e:
        raise ResourceError(f"failed to create directory {params.dir_path}: {e}") from e
    return f"Directory {params.dir_path} created successfully"


async def delete_dir(params: DeleteDirInput, ctx: ToolContext) -> str:
    path = ctx.resolve(params.dir_path)
    if not path.exists():
        raise ResourceError(f"directory {params.dir_path} does not exist")
    if not path.is_dir():
        raise ResourceError(f"path {params.dir_path} is not a directory")

    target = path.resolve()
    root = Path(ctx.root_path).resolve()
    if target == root or target in root.parents:
        raise ResourceError("cannot delete root directory or parent directories")

    try:
        if params.recursive:
            shutil.rmtree(target)
        else:
            if any(target.iterdir()):
                raise ResourceError(f"directory {params.dir_path} is not empty, use recursive=true to force deletion")
            target.rmdir()
    except OSError as e:
        raise ResourceError(f"failed to delete directory {params.dir_path}: {e}") from e

    return f"Directory {params.dir_path} deleted successfully"


async def list_files(params: ListFilesInput, ctx: ToolContext) -> str:
    directory = ctx.resolve(params.directory) if params.directory else Path(ctx.root_path)
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ResourceError(f"failed to list directory {directory}: {e}") from e

    dirs = [f"{entry.name}/" for entry in entries if entry.is_dir()]
    files = [entry.name for entry in entries if not entry.is_dir()]

    result = [f"Directory: {directory}", ""]
    if dirs:
        result.append("Directories:")
        result.extend(f"  {name}" for name in dirs)
        result.append("")
    if files:
        result.append("Files:")
        result.extend(f"  {name}" for name in files)
    if not dirs and not files:
        result.append("Directory is empty")

    return "\n".join(result)


def create_file_tools() -> list[ToolDefinition]:
    return [
        ToolDefinition("read_file", "Read the contents of a file", ReadFileInput, read_file),
        ToolDefinition(
            "write_file", "Write content to a file (creates or overwrites)", WriteFileInput, write_file
        ),
        ToolDefinition(
            "create_file", "Create a new file with content (fails if file exists)", CreateFileInput, create_file
        ),
        ToolDefinition("edit_file", "Edit a file by replacing specific text", EditFileInput, edit_file),
        ToolDefinition(
            "multi_edit_file",
            "Apply several text replacements to one file; nothing is written unless every edit matches",
            MultiEditFileInput,
            multi_edit_file,
        ),
        ToolDefinition("move_file", "Move or rename a file", MoveFileInput, move_file),
        ToolDefinition("copy_file", "Copy a file to a new location", CopyFileInput, copy_file),
        ToolDefinition("delete_file", "Delete a file", DeleteFileInput, delete_file),
        ToolDefinition("create_dir", "Create a directory (with parents)", CreateDirInput, create_dir),
        ToolDefinition(
            "delete_dir", "Delete a directory (recursive=true for non-empty)", DeleteDirInput, delete_dir
        ),
        ToolDefinition("list_files", "List files and directories in a directory", ListFilesInput, list_files),
    ]
