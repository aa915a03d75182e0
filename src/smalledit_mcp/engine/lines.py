"""Line splitting that remembers how the text was terminated.

Transformers work on lists of lines and must give back text with the same
terminator convention: ``\\n`` vs ``\\r\\n`` and whether the last line had a
terminator at all.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LineLayout:
    """Terminator convention of a piece of text."""

    newline: str = "\n"
    trailing_newline: bool = False

    def join(self, lines: list[str]) -> str:
        """Reassemble ``lines`` using this layout."""
        if not lines:
            return ""
        text = self.newline.join(lines)
        if self.trailing_newline:
            text += self.newline
        return text


def split_lines(content: str) -> tuple[list[str], LineLayout]:
    """Split ``content`` on ``\\n`` without losing a final unterminated line.

    Returns:
        (lines without terminators, layout needed to rebuild the text)

    Example:
        >>> split_lines("a\\nb")
        (['a', 'b'], LineLayout(newline='\\n', trailing_newline=False))
    """
    if not content:
        return [], LineLayout()

    newline = "\r\n" if "\r\n" in content else "\n"
    parts = content.split("\n")
    trailing = parts[-1] == ""
    if trailing:
        parts.pop()
    if newline == "\r\n":
        parts = [p[:-1] if p.endswith("\r") else p for p in parts]
    return parts, LineLayout(newline=newline, trailing_newline=trailing)


def split_text_block(text: str) -> list[str]:
    """Split user-supplied insertion text into lines (one trailing newline ignored)."""
    if text.endswith("\r\n"):
        text = text[:-2]
    elif text.endswith("\n"):
        text = text[:-1]
    return [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]
