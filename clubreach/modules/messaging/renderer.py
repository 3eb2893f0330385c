import re
from typing import Mapping

# any double-brace pair is a marker; only identifier-like names can be filled
_MARKER = re.compile(r"\{\{(.*?)\}\}")
_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")

class MissingPlaceholder(ValueError):
    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"missing placeholder(s): {', '.join(name or '<blank>' for name in missing)}")

def placeholders(template: str) -> list[str]:
    """Marker names in order of first appearance."""
    seen: dict[str, None] = {}
    for m in _MARKER.finditer(template):
        seen.setdefault(m.group(1).strip(), None)
    return list(seen)

def render(template: str, context: Mapping[str, str]) -> str:
    missing = [name for name in placeholders(template) if not _NAME.fullmatch(name) or name not in context]
    if missing:
        raise MissingPlaceholder(missing)
    return _MARKER.sub(lambda m: str(context[m.group(1).strip()]), template)
