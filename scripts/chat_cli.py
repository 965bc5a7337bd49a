#!/usr/bin/env python3
"""Interactive chat CLI for the XMeng assistant."""

import asyncio
import sys

from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from xmeng.clients.backend import BackendClient, BackendConfig, BackendError, get_backend_client
from xmeng.models.chat import ChatMessage
from xmeng.services.chat_session import ChatSessionController
from xmeng.services.conversation_store import ConversationStore
from xmeng.services.input_buffer import InputBuffer
from xmeng.utils.logging import LogConfig, setup_logging


class ChatCLI:
    """Interactive chat interface rendering streamed answers live."""

    def __init__(self, base_url: str | None = None):
        """Initialize chat CLI."""
        self.client = BackendClient(BackendConfig(base_url=base_url)) if base_url else get_backend_client()
        self.store = ConversationStore(self.client)
        self.session = ChatSessionController(self.store)
        self.input = InputBuffer()
        self.console = Console()
        self._live: Live | None = None

    async def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]XMeng - Interactive Chat[/bold blue]\n"
                "Ask about your goals, tasks and vocabulary, or just chat.\n"
                "Commands: /help, /new, /list, /open <id>, /rename <name>, /delete <id>, /quit",
                border_style="blue",
            )
        )

        try:
            await self.store.load_conversations()
        except BackendError as e:
            self.console.print(f"[red]❌ Cannot reach the chat backend: {e}[/red]")
            await self.client.aclose()
            return

        self._show_conversations()
        self.store.subscribe(self._refresh)

        try:
            while True:
                prompt = f"\n[bold cyan]You[/bold cyan] [dim]({self._conversation_label()})[/dim]"
                user_input = await asyncio.to_thread(Prompt.ask, prompt)

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                if user_input.startswith("/"):
                    await self._run_command(user_input)
                    continue

                self.input.set_text(user_input)
                message = self.input.submit()
                if message:
                    await self._send(message)

        except (KeyboardInterrupt, EOFError):
            pass
        finally:
            self.console.print("\n[yellow]👋 Goodbye![/yellow]")
            await self.client.aclose()

    async def _send(self, message: str) -> None:
        """Send a message and render the answer while it streams."""
        try:
            with Live(self._render_exchange(), console=self.console, refresh_per_second=12) as live:
                self._live = live
                await self.session.send(None, message)
                live.update(self._render_exchange())
        except BackendError as e:
            self.console.print(f"[red]❌ Could not start a conversation: {e}[/red]")
        finally:
            self._live = None

    def _refresh(self) -> None:
        if self._live is not None:
            self._live.update(self._render_exchange())

    def _render_exchange(self) -> Group:
        # Only the latest answer is redrawn; earlier turns are already on screen
        answers = [m for m in self.store.messages if m.role == "assistant"]
        if not answers:
            return Group(Text("💭 Thinking...", style="dim"))
        return Group(self._render_message(answers[-1]))

    def _render_message(self, message: ChatMessage) -> Panel:
        parts = []
        for tool in message.tool_calls:
            line = Text("✅ " if tool.resolved else "⏳ ", style="dim")
            line.append(tool.name, style="bold")
            line.append(f" {tool.args}", style="dim")
            if tool.resolved:
                line.append(f" → {tool.result}", style="dim")
            parts.append(line)

        content = message.content + (" ▌" if message.streaming else "")
        parts.append(Markdown(content) if content else Text("💭 Thinking...", style="dim"))

        if message.role == "human":
            return Panel(Group(*parts), title="[bold cyan]You[/bold cyan]", border_style="cyan")
        return Panel(
            Group(*parts),
            title="[bold green]🤖 XMeng[/bold green]",
            border_style="green",
            padding=(1, 2),
        )

    async def _run_command(self, command: str) -> None:
        name, _, argument = command.partition(" ")
        argument = argument.strip()

        try:
            match name.lower():
                case "/help":
                    self._show_help()
                case "/new":
                    conversation = await self.store.create_conversation()
                    self.console.print(f"[yellow]🔄 Started conversation {conversation.id}[/yellow]")
                case "/list":
                    await self.store.load_conversations()
                    self._show_conversations()
                case "/open" if argument.isdigit():
                    await self.store.select_conversation(int(argument))
                    for message in self.store.messages:
                        self.console.print(self._render_message(message))
                case "/rename" if argument and self.store.active_conversation_id is not None:
                    await self.store.rename_conversation(self.store.active_conversation_id, argument)
                    self.console.print(f"[yellow]✏️  Renamed to {argument}[/yellow]")
                case "/delete" if argument.isdigit():
                    await self.store.delete_conversation(int(argument))
                    self.console.print(f"[yellow]🗑  Deleted conversation {argument}[/yellow]")
                case _:
                    self.console.print(f"[red]Unknown or incomplete command: {command}[/red]")
        except BackendError as e:
            self.console.print(f"[red]❌ API Error: {e.status_code or ''} {e}[/red]")

    def _conversation_label(self) -> str:
        conversation = self.store.active_conversation
        if conversation is None:
            return "new conversation"
        return conversation.name or "New Chat"

    def _show_conversations(self) -> None:
        if not self.store.conversations:
            self.console.print("[dim]No conversations yet. Type a message to start one.[/dim]")
            return

        table = Table(title=f"Conversations ({self.store.total_conversations})", border_style="yellow")
        table.add_column("ID", justify="right")
        table.add_column("Name")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")
        for conversation in self.store.conversations:
            updated = conversation.updated_at.strftime("%Y-%m-%d %H:%M") if conversation.updated_at else ""
            table.add_row(str(conversation.id), conversation.name or "New Chat", str(conversation.message_count), updated)
        self.console.print(table)

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /new - Start a new conversation
• /list - List conversations
• /open <id> - Switch to a conversation and show its history
• /rename <name> - Rename the current conversation
• /delete <id> - Delete a conversation
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Sending without an open conversation starts a new one
• Set XMENG_ACCESS_TOKEN to authenticate against the backend
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]❓ Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    setup_logging(LogConfig(level="WARNING"))
    base_url = sys.argv[1] if len(sys.argv) > 1 else None

    chat = ChatCLI(base_url)
    asyncio.run(chat.start())


if __name__ == "__main__":
    main()
