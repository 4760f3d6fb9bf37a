"""
Debug tracing: pretty-prints requests and responses with rich panels.

Enabled with ``ClientConfig(debug=True)`` or ``CALLAPI_DEBUG=1``.
"""
import json
from typing import Any, Dict, Mapping, Optional

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax

from .types import ApiResponse, TransportRequest

console = Console(stderr=True)

SENSITIVE_HEADERS = ("authorization", "x-api-key")


def mask_sensitive(value: Optional[str], show_chars: int = 15) -> str:
    """Mask sensitive values for logging."""
    if not value:
        return "<none>"
    if len(value) <= show_chars:
        return "*" * len(value)
    return value[:show_chars] + "***"


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Mask authorization headers for safe printing."""
    masked = dict(headers)
    for key in masked:
        if key.lower() in SENSITIVE_HEADERS:
            masked[key] = mask_sensitive(masked[key])
    return masked


def _format_body(body: Any) -> str:
    """Format body for pretty printing."""
    if body is None:
        return ""
    if isinstance(body, (dict, list)):
        return json.dumps(body, indent=2, ensure_ascii=False)
    if isinstance(body, bytes):
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError:
            return f"<binary data: {len(body)} bytes>"
    return str(body)


def trace_request(request: TransportRequest, attempt: int = 0) -> None:
    """Print an outgoing request."""
    suffix = f" (retry {attempt})" if attempt else ""
    console.print(Panel(f"[bold cyan]{request.method}[/bold cyan] {request.url}", title=f"[bold blue]Request[/bold blue]{suffix}"))
    console.print("[bold]Headers:[/bold]", mask_headers(request.headers))
    if request.content:
        console.print(Panel(Syntax(_format_body(request.content), "json", theme="monokai"), title="[bold]Request Body[/bold]"))


def trace_response(response: ApiResponse) -> None:
    """Print a received response."""
    status_color = "green" if response.ok else "red"
    info = f"[bold {status_color}]{response.status}[/bold {status_color}] {response.status_text}"
    console.print(Panel(info, title=f"[bold blue]Response[/bold blue] ({response.url})"))
    console.print("[bold]Headers:[/bold]", mask_headers(response.headers))
    if response.content:
        console.print(
            Panel(
                Syntax(_format_body(response.content), "json", theme="monokai"),
                title=f"[bold]Response Body[/bold] (URL: {response.url})",
            )
        )


def trace_error(error: BaseException) -> None:
    """Print a terminal error."""
    console.print(Panel(f"[bold red]{type(error).__name__}[/bold red] {error}", title="[bold blue]Error[/bold blue]"))
