"""
File Operations Tools - Read, write, list and search files in the project.

Paths are resolved against the working directory of the tool context.
Reads and writes go through the permission gate; listing and searching do
not touch file contents outside the project tree the user launched in.
"""

import difflib
import fnmatch
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .base import Tool, ToolContext, ToolParameter

logger = logging.getLogger(__name__)

MAX_READ_LINES = 500
MAX_LIST_DEPTH = 3
MAX_SEARCH_DEPTH = 8
DEFAULT_MAX_RESULTS = 50
MAX_DIFF_LINES = 200

IGNORED_DIRS = {"node_modules", ".git", "__pycache__", ".codecli"}


def format_size(size: int) -> str:
    """Human-readable byte count."""
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def _numbered(lines: list[str], start: int) -> str:
    return "\n".join(f"{start + i} | {line}" for i, line in enumerate(lines))


def unified_diff(old: str, new: str, filename: str) -> str:
    """Unified diff between two versions of a file, capped for display."""
    diff = list(difflib.unified_diff(
        old.splitlines(),
        new.splitlines(),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
        lineterm="",
    ))
    if len(diff) > MAX_DIFF_LINES:
        hidden = len(diff) - MAX_DIFF_LINES
        diff = diff[:MAX_DIFF_LINES] + [f"... ({hidden} more diff lines)"]
    return "\n".join(diff)


async def read_file_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Read a file, optionally a 1-indexed inclusive line range."""
    path = context.resolve(args.get("path"))

    if not path.exists():
        return {"error": f"File not found: {path}"}
    if not path.is_file():
        return {"error": f"Not a file: {path}"}

    if not await context.permissions.check_read(path):
        return {"error": "Permission denied"}

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return {"error": f"Failed to read file: {e}"}

    lines = content.split("\n")
    start_line = args.get("start_line")
    end_line = args.get("end_line")

    if start_line or end_line:
        start = max(int(start_line or 1), 1) - 1
        end = min(int(end_line or len(lines)), len(lines))
        return {
            "content": _numbered(lines[start:end], start + 1),
            "totalLines": len(lines),
            "range": {"start": start + 1, "end": end},
        }

    if len(lines) > MAX_READ_LINES:
        content = (
            _numbered(lines[:MAX_READ_LINES], 1)
            + f"\n... ({len(lines) - MAX_READ_LINES} more lines)"
        )

    return {"content": content, "totalLines": len(lines)}


async def write_file_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Create, overwrite, append to, insert into, or search/replace in a file."""
    path = context.resolve(args.get("path"))
    content = args.get("content") or ""
    mode = args.get("mode") or "write"
    search_replace = args.get("search_replace")

    if not await context.permissions.check_write(path):
        return {"error": "Permission denied"}

    exists = path.exists()
    try:
        old_content = path.read_text(encoding="utf-8") if exists else ""
    except (OSError, UnicodeDecodeError) as e:
        return {"error": f"Failed to read file: {e}"}

    if search_replace:
        search = search_replace.get("search") or ""
        if not exists:
            return {"error": "Cannot search/replace in non-existent file"}
        if not search or search not in old_content:
            return {"error": f'Search text not found in file: "{search[:50]}..."'}
        new_content = old_content.replace(search, search_replace.get("replace") or "", 1)
    elif mode == "append":
        new_content = old_content + content
    elif mode == "insert" and args.get("insert_line"):
        lines = old_content.split("\n")
        lines.insert(int(args["insert_line"]) - 1, content)
        new_content = "\n".join(lines)
    else:
        new_content = content

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(new_content, encoding="utf-8")
    except OSError as e:
        return {"error": f"Failed to write file: {e}"}

    line_count = len(new_content.split("\n"))
    logger.info(f"{'Updated' if exists else 'Created'} {path} ({line_count} lines)")

    result: dict[str, Any] = {
        "success": True,
        "action": "updated" if exists else "created",
        "path": str(path),
        "lines": line_count,
    }
    if exists and old_content != new_content:
        result["diff"] = unified_diff(old_content, new_content, path.name)
    return result


def _list_dir(directory: Path, recursive: bool, show_hidden: bool, depth: int = 0) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError:
        return results

    for entry in entries:
        if not show_hidden and entry.name.startswith("."):
            continue
        if entry.name in IGNORED_DIRS:
            continue

        if entry.is_dir():
            children = (
                _list_dir(entry, recursive, show_hidden, depth + 1)
                if recursive and depth < MAX_LIST_DEPTH
                else None
            )
            item: dict[str, Any] = {"name": entry.name, "type": "directory"}
            if children:
                item["children"] = len(children)
            results.append(item)
            for child in children or []:
                results.append({**child, "name": f"{entry.name}/{child['name']}"})
        elif entry.is_file():
            try:
                stat = entry.stat()
            except OSError:
                results.append({"name": entry.name, "type": "file"})
                continue
            results.append({
                "name": entry.name,
                "type": "file",
                "size": format_size(stat.st_size),
                "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).date().isoformat(),
            })

    return results


async def list_directory_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """List a directory (recursive listings stop at depth 3)."""
    directory = context.resolve(args.get("path"))

    if not directory.exists():
        return {"error": f"Directory not found: {directory}"}
    if not directory.is_dir():
        return {"error": f"Not a directory: {directory}"}

    entries = _list_dir(
        directory,
        recursive=bool(args.get("recursive", False)),
        show_hidden=bool(args.get("show_hidden", False)),
    )
    return {"directory": str(directory), "entries": entries, "total": len(entries)}


def _is_ignored(relative: Path) -> bool:
    return any(part in IGNORED_DIRS for part in relative.parts)


async def file_search_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Find files by glob pattern."""
    pattern = args.get("pattern")
    if not pattern:
        return {"error": "pattern is required"}

    directory = context.resolve(args.get("directory"))
    max_results = int(args.get("max_results") or DEFAULT_MAX_RESULTS)

    if not directory.is_dir():
        return {"error": f"Directory not found: {directory}"}

    try:
        found = sorted(
            p for p in directory.glob(pattern)
            if not _is_ignored(p.relative_to(directory))
        )
    except (OSError, ValueError) as e:
        return {"error": f"Search failed: {e}"}

    matches = []
    for p in found[:max_results]:
        relative = str(p.relative_to(directory))
        try:
            stat = p.stat()
        except OSError:
            matches.append({"path": relative, "type": "unknown"})
            continue
        match: dict[str, Any] = {
            "path": relative,
            "type": "directory" if p.is_dir() else "file",
            "modified": datetime.fromtimestamp(stat.st_mtime, timezone.utc).isoformat(),
        }
        if p.is_file():
            match["size"] = stat.st_size
        matches.append(match)

    return {
        "matches": matches,
        "total": len(found),
        "truncated": len(found) > max_results,
    }


async def code_search_handler(args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
    """Grep-like search over text files below a directory."""
    query = args.get("query")
    if not query:
        return {"error": "query is required"}

    directory = context.resolve(args.get("directory"))
    include = args.get("include")
    max_results = int(args.get("max_results") or DEFAULT_MAX_RESULTS)
    flags = 0 if args.get("case_sensitive") else re.IGNORECASE

    try:
        regex = re.compile(query if args.get("is_regex") else re.escape(query), flags)
    except re.error as e:
        return {"error": f"Invalid regex: {e}"}

    if not directory.is_dir():
        return {"error": f"Directory not found: {directory}"}

    matches: list[dict[str, Any]] = []

    def search(current: Path, depth: int) -> None:
        if depth > MAX_SEARCH_DEPTH:
            return
        try:
            entries = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError:
            return

        for entry in entries:
            if len(matches) >= max_results:
                return
            if entry.name.startswith(".") or entry.name in IGNORED_DIRS:
                continue
            if entry.is_dir():
                search(entry, depth + 1)
                continue
            if include and not fnmatch.fnmatch(entry.name, include):
                continue
            try:
                text = entry.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.split("\n"), start=1):
                if regex.search(line):
                    matches.append({
                        "file": str(entry.relative_to(directory)),
                        "line": number,
                        "content": line.strip(),
                    })
                    if len(matches) >= max_results:
                        return

    search(directory, 0)
    return {"matches": matches, "total": len(matches)}


def create_file_tools() -> list[Tool]:
    """Create file operation tools."""
    read_file = Tool(
        name="read_file",
        description="Read the contents of a file. Can optionally read specific line ranges.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Absolute or relative path to the file to read",
            ),
            ToolParameter(
                name="start_line",
                param_type="integer",
                description="Optional start line number (1-indexed)",
                required=False,
            ),
            ToolParameter(
                name="end_line",
                param_type="integer",
                description="Optional end line number (1-indexed, inclusive)",
                required=False,
            ),
        ],
        handler=read_file_handler,
    )

    write_file = Tool(
        name="write_file",
        description=(
            "Write or edit a file. Can create new files or edit existing ones. "
            "For targeted edits use search_replace instead of rewriting the whole file."
        ),
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Path to the file to write or create",
            ),
            ToolParameter(
                name="content",
                param_type="string",
                description="Full content to write to the file",
            ),
            ToolParameter(
                name="mode",
                param_type="string",
                description='Write mode: "write" (overwrite), "append" (add to end), "insert" (insert at line)',
                required=False,
                enum=["write", "append", "insert"],
            ),
            ToolParameter(
                name="insert_line",
                param_type="integer",
                description='Line number to insert at (only used with mode "insert")',
                required=False,
            ),
            ToolParameter(
                name="search_replace",
                param_type="object",
                description="Search and replace operation. Use this for targeted edits.",
                required=False,
                properties={
                    "search": {"type": "string", "description": "Text to search for"},
                    "replace": {"type": "string", "description": "Text to replace with"},
                },
            ),
        ],
        handler=write_file_handler,
    )

    list_directory = Tool(
        name="list_directory",
        description="List the contents of a directory with file types, sizes, and basic info.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="Path to the directory to list (defaults to cwd)",
                required=False,
            ),
            ToolParameter(
                name="recursive",
                param_type="boolean",
                description="Whether to list recursively (default: false, max depth 3)",
                required=False,
            ),
            ToolParameter(
                name="show_hidden",
                param_type="boolean",
                description="Whether to show hidden files (default: false)",
                required=False,
            ),
        ],
        handler=list_directory_handler,
    )

    file_search = Tool(
        name="file_search",
        description="Search for files by name or pattern in the project directory. Supports glob patterns.",
        parameters=[
            ToolParameter(
                name="pattern",
                param_type="string",
                description='Glob pattern to search for (e.g., "**/*.py", "src/**/test*")',
            ),
            ToolParameter(
                name="directory",
                param_type="string",
                description="Directory to search in (defaults to current working directory)",
                required=False,
            ),
            ToolParameter(
                name="max_results",
                param_type="integer",
                description="Maximum number of results to return (default: 50)",
                required=False,
            ),
        ],
        handler=file_search_handler,
    )

    code_search = Tool(
        name="code_search",
        description=(
            "Search for text or regex patterns in code files. Similar to grep. "
            "Returns matching lines with file paths and line numbers."
        ),
        parameters=[
            ToolParameter(
                name="query",
                param_type="string",
                description="Text or regex pattern to search for",
            ),
            ToolParameter(
                name="directory",
                param_type="string",
                description="Directory to search in (defaults to cwd)",
                required=False,
            ),
            ToolParameter(
                name="include",
                param_type="string",
                description='File pattern to include (e.g., "*.py")',
                required=False,
            ),
            ToolParameter(
                name="is_regex",
                param_type="boolean",
                description="Whether the query is a regex pattern",
                required=False,
            ),
            ToolParameter(
                name="case_sensitive",
                param_type="boolean",
                description="Whether the search is case-sensitive (default: false)",
                required=False,
            ),
            ToolParameter(
                name="max_results",
                param_type="integer",
                description="Maximum number of results (default: 50)",
                required=False,
            ),
        ],
        handler=code_search_handler,
    )

    return [read_file, write_file, list_directory, file_search, code_search]
