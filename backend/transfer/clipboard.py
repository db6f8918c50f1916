"""System clipboard access."""

import pyperclip


def write_to_clipboard(text: str) -> None:
    """Replace the clipboard content; raises pyperclip.PyperclipException."""
    pyperclip.copy(text)
