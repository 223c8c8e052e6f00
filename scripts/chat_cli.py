#!/usr/bin/env python3
"""Interactive chat CLI for testing the study chat service."""

import json
import sys

import httpx
from cuid2 import cuid_wrapper
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.prompt import Confirm, Prompt

cuid = cuid_wrapper()


class ChatCLI:
    """Interactive chat interface for the study chat service."""

    def __init__(self, base_url: str = "http://localhost:8000", session_name: str | None = None):
        """Initialize chat CLI."""
        self.base_url = base_url
        self.session_name = session_name or cuid()
        self.console = Console()
        self.client = httpx.Client(timeout=60.0)

    @property
    def agent_url(self) -> str:
        return f"{self.base_url}/agents/chat/{self.session_name}"

    def start(self) -> None:
        """Start the interactive chat session."""
        self.console.print(
            Panel.fit(
                "[bold blue]Study Chat - Interactive Chat[/bold blue]\n"
                "Type your messages to chat with the study assistant.\n"
                "Commands: /help, /history, /clear, /quit",
                border_style="blue",
            )
        )

        if not self._test_connection():
            self.console.print("[red]Cannot connect to the service. Make sure it's running.[/red]")
            return

        self.console.print(f"[green]Connected, session [bold]{self.session_name}[/bold][/green]\n")

        try:
            while True:
                user_input = Prompt.ask("\n[bold cyan]You[/bold cyan]")

                if user_input.lower() in ["/quit", "/exit", "quit", "exit"]:
                    break
                elif user_input.lower() == "/help":
                    self._show_help()
                    continue
                elif user_input.lower() == "/history":
                    self._show_history()
                    continue
                elif user_input.lower() == "/clear":
                    self._clear()
                    continue
                elif user_input.strip() == "":
                    continue

                message = {"role": "user", "parts": [{"type": "text", "text": user_input}]}
                awaiting = self._send_messages([message])

                # Keep answering confirmations until the turn runs to completion
                while awaiting:
                    awaiting = self._send_messages([self._ask_decisions(awaiting)])

        except KeyboardInterrupt:
            pass
        finally:
            self.console.print("\n[yellow]Goodbye![/yellow]")
            self.client.close()

    def _test_connection(self) -> bool:
        """Test connection to the service."""
        try:
            response = self.client.get(f"{self.base_url}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    def _send_messages(self, messages: list[dict]) -> list[dict]:
        """Stream one turn and return the invocations left awaiting confirmation."""
        awaiting: list[dict] = []
        text = ""

        try:
            with self.client.stream("POST", self.agent_url, json={"messages": messages}) as response:
                if response.status_code != 200:
                    response.read()
                    self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
                    return []

                for line in response.iter_lines():
                    if not line:
                        continue
                    code, _, raw = line.partition(":")
                    payload = json.loads(raw)

                    if code == "0":
                        text += payload
                    elif code == "9":
                        self.console.print(f"[dim]Calling {payload['toolName']} {payload['args']}[/dim]")
                    elif code == "a":
                        self._show_tool_result(payload)
                    elif code == "2":
                        awaiting.extend(item for item in payload if item.get("type") == "awaiting-confirmation")
                    elif code == "3":
                        self.console.print(f"[red]Error: {payload}[/red]")

        except httpx.HTTPError as e:
            self.console.print(f"[red]Connection error: {e}[/red]")
            return []

        if text:
            self._display_response(text)
        return awaiting

    def _ask_decisions(self, awaiting: list[dict]) -> dict:
        """Prompt for each invocation awaiting confirmation and build the decision message."""
        parts = []
        for item in awaiting:
            approved = Confirm.ask(
                f"[bold yellow]Run {item['toolName']}[/bold yellow] with {json.dumps(item['args'])}?"
            )
            reason = None if approved else Prompt.ask("Reason (optional)", default="") or None
            parts.append(
                {"type": "tool-decision", "invocation_id": item["toolCallId"], "approved": approved, "reason": reason}
            )
        return {"role": "user", "parts": parts}

    def _show_tool_result(self, payload: dict) -> None:
        name = payload["toolName"]
        if payload.get("state") == "call-rejected":
            self.console.print(f"[yellow]{name} rejected: {payload['result']}[/yellow]")
        elif payload.get("isError"):
            self.console.print(f"[red]{name} failed: {payload['result'].get('error')}[/red]")
        else:
            self.console.print(f"[green]{name} completed[/green]")

    def _display_response(self, text: str) -> None:
        """Display assistant response with nice formatting."""
        self.console.print(
            Panel(
                Markdown(text),
                title="[bold green]Study Assistant[/bold green]",
                border_style="green",
                padding=(1, 2),
            )
        )

    def _show_history(self) -> None:
        response = self.client.get(f"{self.agent_url}/get-messages")
        if response.status_code != 200:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")
            return

        for message in response.json()["messages"]:
            for part in message["parts"]:
                if part["type"] == "text":
                    self.console.print(f"[bold]{message['role']}[/bold]: {part['text']}")
                elif part["type"] == "tool-invocation":
                    self.console.print(f"[dim]{message['role']}: {part['tool_name']} ({part['state']})[/dim]")

    def _clear(self) -> None:
        response = self.client.delete(f"{self.agent_url}/messages")
        if response.status_code == 200:
            self.console.print("[yellow]Transcript cleared[/yellow]")
        else:
            self.console.print(f"[red]API Error: {response.status_code} - {response.text}[/red]")

    def _show_help(self) -> None:
        """Show help information."""
        help_text = """
[bold]Available Commands:[/bold]
• /help - Show this help message
• /history - Show the stored transcript
• /clear - Clear the transcript and start over
• /quit or /exit - Exit the chat

[bold]Tips:[/bold]
• Some tools ask for confirmation before they run; answer y or n
• A rejected tool is reported back to the assistant
        """

        self.console.print(Panel(help_text.strip(), title="[cyan]Help[/cyan]", border_style="cyan"))


def main():
    """Main entry point for the chat CLI."""
    base_url = sys.argv[1] if len(sys.argv) > 1 else "http://localhost:8000"
    session_name = sys.argv[2] if len(sys.argv) > 2 else None

    chat = ChatCLI(base_url, session_name)
    chat.start()


if __name__ == "__main__":
    main()
