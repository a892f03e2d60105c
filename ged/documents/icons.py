"""
GED Folder Icons — Keyword-derived glyphs for folders without a usable icon.

An icon is usable when it is non-empty and contains no "?" (the marker left
behind when an emoji went through a non-UTF-8 connection). The folder code is
matched first, then the name; the first keyword found wins.
"""

from __future__ import annotations

from typing import Optional, Tuple

DEFAULT_FOLDER_ICON = "📁"

# Ordered: specific keywords before generic ones
KEYWORD_ICONS: Tuple[Tuple[str, str], ...] = (
    ("CONFIDENTIEL", "🔒"),
    ("CORBEILLE", "🗑️"),
    ("BORDEREAU", "📋"),
    ("CHRONO", "🕐"),
    ("ENTRANT", "📥"),
    ("SORTANT", "📤"),
    ("DÉCISION", "⚖️"),
    ("DECISION", "⚖️"),
    ("MINISTÉRIEL", "⚖️"),
    ("MINISTERIEL", "⚖️"),
    ("ARCHIVES", "📂"),
    ("PERSONNEL", "👥"),
    ("COURRIER", "📮"),
    ("INTERNE", "🏢"),
    ("DIVERS", "📚"),
    ("ADMIN", "⚙️"),
    ("TEST", "🧪"),
    ("ROOT", "🏠"),
)


def is_valid_icon(icon: Optional[str]) -> bool:
    return bool(icon and icon.strip()) and "?" not in icon


def icon_for(code: Optional[str], name: Optional[str], default: str = DEFAULT_FOLDER_ICON) -> str:
    """Keyword glyph for a folder, code first then name."""
    for text in (code, name):
        if not text:
            continue
        upper = text.upper()
        for keyword, icon in KEYWORD_ICONS:
            if keyword in upper:
                return icon
    return default


def resolve_icon(
    icon: Optional[str],
    code: Optional[str],
    name: Optional[str],
    default: str = DEFAULT_FOLDER_ICON,
) -> str:
    """Keep a usable icon, otherwise derive one."""
    if is_valid_icon(icon):
        return icon.strip()
    return icon_for(code, name, default)
