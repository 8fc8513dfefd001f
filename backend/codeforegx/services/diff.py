"""
Line diffs between two revisions of a prompt or template.

Produces the blob the version-history views render: inline HTML with
<ins>/<del> markers, a unified diff, and line counts.
"""

import difflib
import html
from dataclasses import dataclass


@dataclass
class TextDiff:
    html: str
    unified: str
    added: int = 0
    removed: int = 0
    unchanged: int = 0

    @property
    def stats(self) -> dict[str, int]:
        return {"added": self.added, "removed": self.removed, "unchanged": self.unchanged}


def _split_lines(text: str) -> list[str]:
    return (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")


def compare_text(old: str, new: str, *, old_label: str = "previous", new_label: str = "current") -> TextDiff:
    old_lines = _split_lines(old)
    new_lines = _split_lines(new)

    unified = "\n".join(
        difflib.unified_diff(old_lines, new_lines, fromfile=old_label, tofile=new_label, lineterm="")
    )

    if old_lines == new_lines:
        return TextDiff(html=html.escape(new or ""), unified=unified, unchanged=len(new_lines))

    matcher = difflib.SequenceMatcher(a=old_lines, b=new_lines, autojunk=False)
    out: list[str] = []
    diff = TextDiff(html="", unified=unified)

    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            out.extend(html.escape(line) for line in old_lines[i1:i2])
            diff.unchanged += i2 - i1
            continue
        if tag in ("delete", "replace"):
            out.extend(f"<del>{html.escape(line)}</del>" for line in old_lines[i1:i2])
            diff.removed += i2 - i1
        if tag in ("insert", "replace"):
            out.extend(f"<ins>{html.escape(line)}</ins>" for line in new_lines[j1:j2])
            diff.added += j2 - j1

    diff.html = "\n".join(out) + "\n"
    return diff
