"""
Agent tools: declarations sent to the model and the executor that runs them.

Every call is validated into its own argument model before anything touches
the disk, and every path must resolve inside one of the folders the user
granted. Deletions, and moves that would replace an existing file, are staged
in the pending-actions queue instead of being performed.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Annotated, Any, Literal, Union
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from triageq.actions.pending import PendingActionsQueue, PendingKind
from triageq.analysis.storage import analyze_storage
from triageq.config import READ_FILE_MAX_CHARS, STORAGE_SCAN_MAX_DEPTH
from triageq.errors import ClassificationError, PathNotAllowedError, PendingActionError
from triageq.files.operations import format_size, is_within, unique_destination
from triageq.llm.client import ImageInput
from triageq.observability.logging import get_logger
from triageq.observability.signals import HostSignals
from triageq.observability.telemetry import counter, log_event

logger = get_logger(__name__)

FILE_MODIFYING_TOOLS = frozenset(
    {"write_file", "create_folder", "move_file", "rename_file", "copy_file", "create_spreadsheet"}
)


# ----------------------------------------------------------------------
# Argument models
# ----------------------------------------------------------------------


class ListDirectoryArgs(BaseModel):
    tool: Literal["list_directory"] = "list_directory"
    path: str


class ReadFileArgs(BaseModel):
    tool: Literal["read_file"] = "read_file"
    path: str


class WriteFileArgs(BaseModel):
    tool: Literal["write_file"] = "write_file"
    path: str
    content: str


class CreateFolderArgs(BaseModel):
    tool: Literal["create_folder"] = "create_folder"
    path: str


class DeleteFileArgs(BaseModel):
    tool: Literal["delete_file"] = "delete_file"
    path: str


class MoveFileArgs(BaseModel):
    tool: Literal["move_file"] = "move_file"
    source_path: str
    destination_path: str


class RenameFileArgs(BaseModel):
    tool: Literal["rename_file"] = "rename_file"
    path: str
    new_name: str

    @field_validator("new_name")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        name = value.strip()
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError("new_name must be a file name, not a path")
        return name


class CopyFileArgs(BaseModel):
    tool: Literal["copy_file"] = "copy_file"
    source_path: str
    destination_path: str


class AnalyzeStorageArgs(BaseModel):
    tool: Literal["analyze_storage"] = "analyze_storage"
    path: str
    depth: int = Field(default=STORAGE_SCAN_MAX_DEPTH, ge=1, le=5)


class AnalyzeImageArgs(BaseModel):
    tool: Literal["analyze_image"] = "analyze_image"
    path: str
    prompt: str = "Describe this image and extract any text, dates, and amounts."


class SpreadsheetColumn(BaseModel):
    header: str
    key: str
    width: int | None = None


class CreateSpreadsheetArgs(BaseModel):
    tool: Literal["create_spreadsheet"] = "create_spreadsheet"
    path: str
    columns: list[SpreadsheetColumn]
    rows: list[dict[str, Any]]
    sheet_name: str = "Sheet1"

    @field_validator("columns", "rows", mode="before")
    @classmethod
    def _decode_json(cls, value: object) -> object:
        # the model sends these as JSON strings
        if isinstance(value, str):
            return json.loads(value)
        return value


class ListPendingActionsArgs(BaseModel):
    tool: Literal["list_pending_actions"] = "list_pending_actions"


ToolArgs = Annotated[
    Union[
        ListDirectoryArgs,
        ReadFileArgs,
        WriteFileArgs,
        CreateFolderArgs,
        DeleteFileArgs,
        MoveFileArgs,
        RenameFileArgs,
        CopyFileArgs,
        AnalyzeStorageArgs,
        AnalyzeImageArgs,
        CreateSpreadsheetArgs,
        ListPendingActionsArgs,
    ],
    Field(discriminator="tool"),
]

_TOOL_ADAPTER: TypeAdapter[Any] = TypeAdapter(ToolArgs)


# ----------------------------------------------------------------------
# Declarations
# ----------------------------------------------------------------------


def _param(kind: str, description: str) -> dict[str, str]:
    return {"type": kind, "description": description}


TOOL_DECLARATIONS: list[dict[str, Any]] = [
    {
        "name": "list_directory",
        "description": "List files and folders in a directory with sizes and types.",
        "parameters": {
            "type": "object",
            "properties": {"path": _param("string", "Absolute path of the directory")},
            "required": ["path"],
        },
    },
    {
        "name": "read_file",
        "description": "Read a text, CSV, JSON, code, or .xlsx file.",
        "parameters": {
            "type": "object",
            "properties": {"path": _param("string", "Absolute path of the file")},
            "required": ["path"],
        },
    },
    {
        "name": "write_file",
        "description": "Create a text file. Refuses to overwrite; existing files get a numbered name.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": _param("string", "Absolute path of the new file"),
                "content": _param("string", "Text content"),
            },
            "required": ["path", "content"],
        },
    },
    {
        "name": "create_folder",
        "description": "Create a folder, including missing parents.",
        "parameters": {
            "type": "object",
            "properties": {"path": _param("string", "Absolute path of the folder")},
            "required": ["path"],
        },
    },
    {
        "name": "delete_file",
        "description": (
            "Queue a file for deletion. Nothing is deleted until the user approves it "
            "in the review panel."
        ),
        "parameters": {
            "type": "object",
            "properties": {"path": _param("string", "Absolute path to delete")},
            "required": ["path"],
        },
    },
    {
        "name": "move_file",
        "description": "Move a file or folder. Replacing an existing file is queued for review.",
        "parameters": {
            "type": "object",
            "properties": {
                "source_path": _param("string", "Absolute source path"),
                "destination_path": _param("string", "Absolute destination path"),
            },
            "required": ["source_path", "destination_path"],
        },
    },
    {
        "name": "rename_file",
        "description": "Rename a file or folder in place.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": _param("string", "Absolute path of the file or folder"),
                "new_name": _param("string", "New name only, not a path"),
            },
            "required": ["path", "new_name"],
        },
    },
    {
        "name": "copy_file",
        "description": "Copy a file or folder. Existing destinations get a numbered name.",
        "parameters": {
            "type": "object",
            "properties": {
                "source_path": _param("string", "Absolute source path"),
                "destination_path": _param("string", "Absolute destination path"),
            },
            "required": ["source_path", "destination_path"],
        },
    },
    {
        "name": "analyze_storage",
        "description": "Summarize disk usage by type, largest files, old files, and cleanup ideas.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": _param("string", "Absolute path of the folder"),
                "depth": _param("number", "Subfolder depth to scan, 1-5 (default 3)"),
            },
            "required": ["path"],
        },
    },
    {
        "name": "analyze_image",
        "description": "Read text and data from an image such as a receipt or screenshot.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": _param("string", "Absolute path of the image"),
                "prompt": _param("string", "What to extract from the image"),
            },
            "required": ["path", "prompt"],
        },
    },
    {
        "name": "create_spreadsheet",
        "description": "Create an .xlsx file with a bold header row and one row per record.",
        "parameters": {
            "type": "object",
            "properties": {
                "path": _param("string", "Absolute path of the new .xlsx file"),
                "sheet_name": _param("string", "Worksheet name (default Sheet1)"),
                "columns": _param(
                    "string",
                    'JSON array of {"header": "Name", "key": "name", "width": 20}',
                ),
                "rows": _param("string", "JSON array of objects keyed by column key"),
            },
            "required": ["path", "columns", "rows"],
        },
    },
    {
        "name": "list_pending_actions",
        "description": "List actions waiting for the user's approval.",
        "parameters": {"type": "object", "properties": {}},
    },
]

TOOL_NAMES = frozenset(d["name"] for d in TOOL_DECLARATIONS)


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------


class ToolExecutor:
    def __init__(
        self,
        granted_folders: Iterable[Path],
        queue: PendingActionsQueue,
        client=None,
        signals: HostSignals | None = None,
    ) -> None:
        self.granted_folders = [Path(p).expanduser().resolve() for p in granted_folders]
        self.queue = queue
        self.client = client
        self.signals = signals or HostSignals()

    def parse(self, name: str, args: dict[str, Any] | None) -> ToolArgs:
        """
        Raises:
            ValidationError: If args don't fit the tool's argument model
        """
        return _TOOL_ADAPTER.validate_python({**(args or {}), "tool": name})

    async def execute(self, name: str, args: dict[str, Any] | None) -> dict[str, Any]:
        """Run one tool call. Never raises; failures come back as {"error": ...}."""
        if name not in TOOL_NAMES:
            counter("tools.unknown")
            return {"error": f"Unknown tool: {name}"}
        try:
            parsed = self.parse(name, args)
        except (ValidationError, json.JSONDecodeError) as e:
            counter("tools.invalid_args")
            return {"error": f"Invalid arguments for {name}: {e}"}

        try:
            result = await getattr(self, f"_{name}")(parsed)
        except (
            PathNotAllowedError,
            PendingActionError,
            ClassificationError,
            OSError,
            ValueError,
            BadZipFile,
            InvalidFileException,
        ) as e:
            counter("tools.failed")
            logger.warning("Tool %s failed: %s", name, e)
            return {"error": str(e)}

        counter(f"tools.{name}")
        log_event("tools.executed", tool=name)
        if name in FILE_MODIFYING_TOOLS and result.get("success") and not result.get("unchanged"):
            self.signals.emit("fs:changed", {"tool": name})
        return result

    def resolve(self, raw: str) -> Path:
        """
        Raises:
            PathNotAllowedError: If raw resolves outside every granted folder
        """
        path = Path(raw).expanduser()
        if not path.is_absolute() and self.granted_folders:
            path = self.granted_folders[0] / path
        path = path.resolve()
        if not any(is_within(path, root) for root in self.granted_folders):
            raise PathNotAllowedError(f"Path is outside the granted folders: {raw}")
        return path

    # -- individual tools ----------------------------------------------

    async def _list_directory(self, args: ListDirectoryArgs) -> dict[str, Any]:
        path = self.resolve(args.path)

        def listing() -> list[dict[str, Any]]:
            items = []
            for child in sorted(path.iterdir(), key=lambda p: p.name.lower()):
                if child.name.startswith("."):
                    continue
                try:
                    stat = child.stat()
                except OSError:
                    continue
                items.append(
                    {
                        "name": child.name,
                        "path": str(child),
                        "is_directory": child.is_dir(),
                        "size": stat.st_size,
                        "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                    }
                )
            return items

        items = await asyncio.to_thread(listing)
        return {"success": True, "path": str(path), "items": items, "count": len(items)}

    async def _read_file(self, args: ReadFileArgs) -> dict[str, Any]:
        path = self.resolve(args.path)
        if path.suffix.lower() in (".xlsx", ".xlsm"):
            content = await asyncio.to_thread(_workbook_as_text, path)
        else:
            raw = await asyncio.to_thread(path.read_bytes)
            if b"\x00" in raw[:4096]:
                return {"error": f"{path.name} is a binary file and cannot be read as text"}
            content = raw.decode("utf-8", errors="replace")
        truncated = len(content) > READ_FILE_MAX_CHARS
        return {
            "success": True,
            "path": str(path),
            "content": content[:READ_FILE_MAX_CHARS],
            "truncated": truncated,
        }

    async def _write_file(self, args: WriteFileArgs) -> dict[str, Any]:
        path = unique_destination(self.resolve(args.path))

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(args.content, encoding="utf-8")

        await asyncio.to_thread(write)
        return {"success": True, "path": str(path)}

    async def _create_folder(self, args: CreateFolderArgs) -> dict[str, Any]:
        path = self.resolve(args.path)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
        return {"success": True, "path": str(path)}

    async def _delete_file(self, args: DeleteFileArgs) -> dict[str, Any]:
        path = self.resolve(args.path)
        action = await self.queue.queue_deletion(path, "Requested by AI assistant")
        return {
            "success": True,
            "queued": True,
            "action_id": action.id,
            "message": (
                f'"{action.file_name}" is queued for deletion. '
                "The user must approve it before anything is removed."
            ),
        }

    async def _move_file(self, args: MoveFileArgs) -> dict[str, Any]:
        source = self.resolve(args.source_path)
        destination = self.resolve(args.destination_path)
        if destination.is_dir():
            destination = destination / source.name
        if destination == source:
            return {
                "success": True,
                "unchanged": True,
                "message": f"{source.name} is already in {source.parent.name}",
            }
        if destination.exists():
            action = await self.queue.queue_action(
                PendingKind.OVERWRITE, source, destination, "Move would replace an existing file"
            )
            return {
                "success": True,
                "queued": True,
                "action_id": action.id,
                "message": f"{destination.name} already exists; the replacement is queued for review.",
            }

        def move() -> None:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(source), str(destination))

        await asyncio.to_thread(move)
        return {"success": True, "source": str(source), "destination": str(destination)}

    async def _rename_file(self, args: RenameFileArgs) -> dict[str, Any]:
        source = self.resolve(args.path)
        destination = source.with_name(args.new_name)
        if destination.exists():
            return {"error": f"{args.new_name} already exists in {source.parent.name}"}
        await asyncio.to_thread(source.rename, destination)
        return {"success": True, "source": str(source), "destination": str(destination)}

    async def _copy_file(self, args: CopyFileArgs) -> dict[str, Any]:
        source = self.resolve(args.source_path)
        destination = self.resolve(args.destination_path)
        if destination.is_dir():
            destination = destination / source.name
        destination = unique_destination(destination)

        def copy() -> None:
            destination.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, destination)
            else:
                shutil.copy2(source, destination)

        await asyncio.to_thread(copy)
        return {"success": True, "source": str(source), "destination": str(destination)}

    async def _analyze_storage(self, args: AnalyzeStorageArgs) -> dict[str, Any]:
        path = self.resolve(args.path)
        analysis = await asyncio.to_thread(analyze_storage, path, args.depth)
        self.signals.emit("storage:analyzed", {"path": str(path), "total_size": analysis.total_size})
        return {"success": True, "data": analysis.to_dict(), "summary": analysis.summary()}

    async def _analyze_image(self, args: AnalyzeImageArgs) -> dict[str, Any]:
        if self.client is None:
            return {"error": "Image analysis is not available"}
        path = self.resolve(args.path)
        image = await asyncio.to_thread(ImageInput.from_path, path)
        response = await self.client.generate(
            args.prompt, image=image, temperature=0.2, max_output_tokens=2048
        )
        return {"success": True, "path": str(path), "analysis": response.text}

    async def _create_spreadsheet(self, args: CreateSpreadsheetArgs) -> dict[str, Any]:
        path = self.resolve(args.path)
        if path.suffix.lower() != ".xlsx":
            path = path.with_suffix(".xlsx")
        path = unique_destination(path)
        await asyncio.to_thread(_write_spreadsheet, path, args)
        return {"success": True, "path": str(path), "rows": len(args.rows)}

    async def _list_pending_actions(self, args: ListPendingActionsArgs) -> dict[str, Any]:
        actions = [a.to_dict() for a in self.queue.list()]
        return {
            "success": True,
            "count": len(actions),
            "total_size": format_size(self.queue.total_size()),
            "actions": actions,
        }


def _workbook_as_text(path: Path) -> str:
    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        lines = []
        for sheet in workbook.worksheets:
            lines.append(f"## {sheet.title}")
            for row in sheet.iter_rows(values_only=True):
                if any(v is not None for v in row):
                    lines.append("\t".join("" if v is None else str(v) for v in row))
        return "\n".join(lines)
    finally:
        workbook.close()


def _write_spreadsheet(path: Path, args: CreateSpreadsheetArgs) -> None:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = args.sheet_name[:31] or "Sheet1"
    sheet.append([c.header for c in args.columns])
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for row in args.rows:
        sheet.append([row.get(c.key) for c in args.columns])
    for idx, column in enumerate(args.columns, start=1):
        if column.width:
            sheet.column_dimensions[get_column_letter(idx)].width = column.width
    sheet.freeze_panes = "A2"
    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
