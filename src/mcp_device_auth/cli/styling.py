"""Terminal styling for credential and device-flow output.

Colors follow what the user has to act on: the device code is green,
the verification URL blue, problems yellow or red. Status names match
the "status" values of `auth status --json`.
"""

from __future__ import annotations

__all__ = [
    "style_dim",
    "style_error",
    "style_header",
    "style_info",
    "style_label",
    "style_scopes",
    "style_section",
    "style_status",
    "style_success",
    "style_user_code",
    "style_verification_uri",
    "style_warning",
]

from collections.abc import Iterable

import click

# auth status --json "status" value -> (text, color, bold)
_STATUS_STYLES: dict[str, tuple[str, str, bool]] = {
    "authenticated": ("Authenticated", "green", True),
    "token_expired": ("Token expired", "red", False),
    "not_authenticated": ("Not authenticated", "yellow", False),
}


def style_header(title: str) -> str:
    """Dashed header for a group of `init` prompts, e.g. "--- Authorization Server ---"."""
    return click.style(f"--- {title} ---", fg="cyan", bold=True)


def style_section(title: str) -> str:
    """Plain section title ("Storage", "Session", "Authentication Required")."""
    return click.style(title, fg="cyan", bold=True)


def style_label(label: str) -> str:
    return click.style(f"{label}:", fg="cyan", bold=True)


def style_status(status: str) -> str:
    """Status line for a credential state from `auth status`."""
    text, color, bold = _STATUS_STYLES.get(status, (status, "yellow", False))
    return click.style(f"Status: {text}", fg=color, bold=bold)


def style_user_code(user_code: str) -> str:
    """The code the user types in the browser. Shown on every login."""
    return click.style(user_code, fg="green", bold=True)


def style_verification_uri(uri: str) -> str:
    return click.style(uri, fg="blue", underline=True)


def style_scopes(scopes: Iterable[str], empty: str = "(none)") -> str:
    """Space-joined, sorted scope list; `empty` when there are none."""
    return " ".join(sorted(scopes)) or empty


def style_success(message: str) -> str:
    return click.style(f"✓ {message}", fg="green")


def style_error(message: str) -> str:
    """Error line, e.g. "✗ Refresh token: Access denied" for a failed keychain delete."""
    return click.style(f"✗ {message}", fg="red")


def style_info(message: str) -> str:
    return f"{click.style('i', fg='blue')} {message}"


def style_dim(message: str) -> str:
    """Hints that need no action (e.g. how to log out)."""
    return click.style(message, dim=True)


def style_warning(message: str) -> str:
    """Yellow "Warning: ..." line, e.g. for scopes the server did not grant."""
    return click.style(f"Warning: {message}", fg="yellow", bold=True)
