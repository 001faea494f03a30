"""Vault tools the agent can call during its tool-use rounds."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Type

from pydantic import BaseModel, Field, ValidationError

from cortex.models import ToolResult, ToolSchema
from cortex.vault import FilesystemVault, VaultPathError, ensure_markdown, normalize_path

logger = logging.getLogger(__name__)

CommandHandler = Callable[..., Any]


class NotesArgs(BaseModel):
    action: Literal["list", "read"] = Field(default="list", description="Choose list or read.")
    path: str = Field(
        default="",
        description="Folder or file path, e.g. 'Projects' or 'Projects/Idea.md'.",
    )


class CreateNoteArgs(BaseModel):
    path: str = Field(description="Full path, e.g. 'Folder/Note.md'.")
    content: str = Field(description="Markdown content.")


class OrganizeNoteArgs(BaseModel):
    current_path: str = Field(description="Existing path to the note, e.g. 'Projects/Alpha.md'.")
    new_path: str = Field(
        description="Target path for the note, e.g. 'Projects/Archive/Alpha.md'."
    )


class ExecuteCommandArgs(BaseModel):
    command_id: str = Field(description="Registered command id, e.g. 'vault:reindex'.")
    args: Dict[str, Any] = Field(
        default_factory=dict, description="Optional keyword arguments for the command."
    )


class CommandRegistry:
    """Host commands exposed through the ``execute_command`` tool."""

    def __init__(self) -> None:
        self._commands: Dict[str, CommandHandler] = {}

    def register(self, command_id: str, handler: CommandHandler) -> None:
        self._commands[command_id] = handler

    def list_commands(self) -> list[str]:
        return sorted(self._commands)

    def get(self, command_id: str) -> Optional[CommandHandler]:
        return self._commands.get(command_id)


class ToolRegistry:
    """Tool catalog plus dispatch.

    ``run_tool`` never raises; every failure becomes a ``ToolResult`` with
    ``success=False`` so the model sees it as an observation.
    """

    def __init__(self, vault: FilesystemVault, commands: Optional[CommandRegistry] = None):
        self.vault = vault
        self.commands = commands or CommandRegistry()
        self._tools: Dict[str, tuple[str, Type[BaseModel], Callable[[Any], Awaitable[ToolResult]]]] = {
            "notes": (
                "List notes in a folder or read the contents of a specific note.",
                NotesArgs,
                self._notes,
            ),
            "create_note": (
                "Create a markdown note, or overwrite it if it already exists.",
                CreateNoteArgs,
                self._create_note,
            ),
            "organize_note": (
                "Move or rename a markdown note while preserving wikilinks.",
                OrganizeNoteArgs,
                self._organize_note,
            ),
            "execute_command": (
                "Run a registered host command by id.",
                ExecuteCommandArgs,
                self._execute_command,
            ),
        }

    def get_schemas(self) -> list[ToolSchema]:
        return [
            ToolSchema(name=name, description=description, parameters=model.model_json_schema())
            for name, (description, model, _) in self._tools.items()
        ]

    async def run_tool(self, name: str, args: Optional[Dict[str, Any]]) -> ToolResult:
        """Validate ``args`` against the tool's model and execute it.

        Args:
            name: Tool name from the catalog.
            args: Decoded JSON arguments from the model.

        Returns:
            Structured result; failures carry a human-readable reason.
        """
        entry = self._tools.get(name)
        if entry is None:
            return ToolResult(name=name, success=False, output=f"Tool {name} is not implemented.")
        _, model, handler = entry
        try:
            parsed = model.model_validate(args or {})
        except ValidationError as e:
            logger.warning(f"Invalid arguments for tool {name}: {e}")
            return ToolResult(name=name, success=False, output=f"Invalid arguments for {name}: {e}")
        try:
            return await handler(parsed)
        except VaultPathError as e:
            return ToolResult(name=name, success=False, output=str(e))
        except Exception as e:
            logger.exception(f"Tool {name} failed")
            return ToolResult(name=name, success=False, output=f"Tool {name} failed: {e}")

    async def _notes(self, args: NotesArgs) -> ToolResult:
        path = args.path.strip()
        if args.action == "list":
            if not await self.vault.is_folder(path):
                return ToolResult(
                    name="notes", success=False, output="Provide a valid folder to list notes."
                )
            items = await self.vault.list_folder(path)
            return ToolResult(
                name="notes",
                success=True,
                output="\n".join(items) or "No markdown files found.",
                data=items,
            )

        if not path:
            return ToolResult(
                name="notes", success=False, output="A file path is required to read a note."
            )
        normalized = ensure_markdown(normalize_path(path))
        if not await self.vault.exists(normalized) or await self.vault.is_folder(normalized):
            return ToolResult(name="notes", success=False, output=f"No file found at {normalized}.")
        content = await self.vault.read(normalized)
        return ToolResult(name="notes", success=True, output=content)

    async def _create_note(self, args: CreateNoteArgs) -> ToolResult:
        path = args.path.strip()
        if not path:
            return ToolResult(name="create_note", success=False, output="A valid path is required.")
        normalized = ensure_markdown(normalize_path(path))
        created = await self.vault.write(normalized, args.content)
        verb = "Created" if created else "Updated"
        return ToolResult(name="create_note", success=True, output=f"{verb} note at {normalized}.")

    async def _organize_note(self, args: OrganizeNoteArgs) -> ToolResult:
        current = normalize_path(args.current_path.strip())
        target = args.new_path.strip()
        if not current or not target:
            return ToolResult(
                name="organize_note",
                success=False,
                output="Both current_path and new_path are required.",
            )
        if not await self.vault.exists(current) or await self.vault.is_folder(current):
            return ToolResult(name="organize_note", success=False, output=f"No file found at {current}.")
        normalized = ensure_markdown(normalize_path(target))
        await self.vault.rename(current, normalized)
        return ToolResult(name="organize_note", success=True, output=f"Moved note to {normalized}.")

    async def _execute_command(self, args: ExecuteCommandArgs) -> ToolResult:
        command_id = args.command_id.strip()
        if not command_id:
            return ToolResult(name="execute_command", success=False, output="A command_id is required.")
        handler = self.commands.get(command_id)
        if handler is None:
            return ToolResult(
                name="execute_command", success=False, output=f"Command {command_id} not found."
            )
        result = handler(**args.args)
        if inspect.isawaitable(result):
            result = await result
        output = f"Executed {command_id}."
        if result is not None:
            output += f" Result: {result}"
        return ToolResult(name="execute_command", success=True, output=output, data=result)
