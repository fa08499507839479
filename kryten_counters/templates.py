"""``{{token}}`` substitution for command responses and announcements."""

from __future__ import annotations

import re
from typing import Any, Mapping

TOKEN_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


def render(template: str, tokens: Mapping[str, Any]) -> str:
    """Replace every ``{{key}}`` in *template* with ``str(tokens[key])``.

    Keys match case-insensitively. Placeholders whose key is not in
    *tokens* are left in the output verbatim.
    """
    if not template:
        return ""
    lookup = {str(k).lower(): v for k, v in tokens.items()}

    def _substitute(match: re.Match[str]) -> str:
        key = match.group(1).lower()
        if key not in lookup:
            return match.group(0)
        return str(lookup[key])

    return TOKEN_PATTERN.sub(_substitute, template)
