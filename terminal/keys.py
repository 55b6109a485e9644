"""tmux key names and the human-friendly aliases that resolve to them."""

from __future__ import annotations

import re

# names send-keys understands without quoting
TMUX_SPECIAL_KEYS: frozenset[str] = frozenset(
    [f"C-{c}" for c in "abcdefghijklnopqrstuvwxyz"]
    + ["Enter", "Tab", "Escape", "Space", "BSpace", "DC"]
    + ["Up", "Down", "Right", "Left", "Home", "End", "PageUp", "PageDown"]
    + [f"F{n}" for n in range(1, 13)]
)

_ALT_RE = re.compile(r"^M-[A-Za-z0-9]$")
_CTRL_SHIFT_RE = re.compile(r"^C-S-[A-Za-z0-9]$")

# case-sensitive: lowercase words like "end" or "up" stay literal text
_NAMED_ALIASES = {
    "Return": "Enter",
    "Esc": "Escape",
    "Backspace": "BSpace",
    "Delete": "DC",
    "Del": "DC",
    "PgUp": "PageUp",
    "PgDn": "PageDown",
}
_ALIAS_RE = re.compile(r"^(?P<mods>(?:(?:ctrl|control|alt|meta|shift)\+)+)(?P<key>[A-Za-z0-9])$", re.IGNORECASE)


def is_modifier_key(value: str) -> bool:
    """``M-<alnum>`` or ``C-S-<alnum>``; nothing else may reach send-keys unquoted."""
    return bool(_ALT_RE.match(value) or _CTRL_SHIFT_RE.match(value))


def is_tmux_key(value: str) -> bool:
    return value in TMUX_SPECIAL_KEYS or is_modifier_key(value)


def resolve_key_alias(value: str) -> str | None:
    """Map spellings like ``Ctrl+C``, ``Alt+x`` or ``Backspace`` to a tmux key name.

    Returns None when ``value`` is not a recognised key, in which case callers
    treat it as literal text.
    """
    if is_tmux_key(value):
        return value

    named = _NAMED_ALIASES.get(value)
    if named:
        return named

    match = _ALIAS_RE.match(value)
    if not match:
        return None
    mods = {m.lower() for m in match.group("mods").rstrip("+").split("+")}
    key = match.group("key")
    ctrl = bool(mods & {"ctrl", "control"})
    alt = bool(mods & {"alt", "meta"})
    shift = "shift" in mods

    if alt and not ctrl and not shift:
        return f"M-{key}"
    if ctrl and shift and not alt:
        return f"C-S-{key}"
    if ctrl and not alt and not shift:
        name = f"C-{key.lower()}"
        return name if name in TMUX_SPECIAL_KEYS else None
    return None
