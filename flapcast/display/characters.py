"""Text to split-flap character code conversion."""

ROWS = 6
COLS = 22

COLOR_CODES = {
    "RED": 63,
    "ORANGE": 64,
    "YELLOW": 65,
    "GREEN": 66,
    "BLUE": 67,
    "VIOLET": 68,
    "WHITE": 69,
}

CHARACTER_CODES: dict[str, int] = {
    " ": 0,
    **{letter: index for index, letter in enumerate("ABCDEFGHIJKLMNOPQRSTUVWXYZ", start=1)},
    **{digit: index for index, digit in enumerate("1234567890", start=27)},
    "!": 37,
    "@": 38,
    "#": 39,
    "$": 40,
    "(": 41,
    ")": 42,
    "-": 44,
    "+": 46,
    "&": 47,
    "=": 48,
    ";": 49,
    ":": 50,
    "'": 52,
    '"': 53,
    "%": 54,
    ",": 55,
    ".": 56,
    "/": 59,
    "?": 60,
    "°": 62,
}

# Single code point emoji rendered as color tiles; black maps to blank
COLOR_EMOJI_CODES: dict[str, int] = {
    "🟥": 63, "🔴": 63, "❤": 63,
    "🟧": 64, "🟠": 64, "🧡": 64,
    "🟨": 65, "🟡": 65, "💛": 65,
    "🟩": 66, "🟢": 66, "💚": 66,
    "🟦": 67, "🔵": 67, "💙": 67,
    "🟪": 68, "🟣": 68, "💜": 68,
    "⬜": 69, "◻": 69, "◽": 69, "▫": 69, "⚪": 69, "🤍": 69,
    "⬛": 0, "◼": 0, "◾": 0, "▪": 0, "⚫": 0, "🖤": 0,
}

_CODE_TO_CHAR = {code: char for char, code in CHARACTER_CODES.items()}


def char_to_code(char: str) -> int:
    """Map one character to its code. Unsupported characters become blank."""
    if char in COLOR_EMOJI_CODES:
        return COLOR_EMOJI_CODES[char]
    return CHARACTER_CODES.get(char.upper(), 0)


def code_to_char(code: int) -> str:
    return _CODE_TO_CHAR.get(code, " ")


def wrap_text(text: str, width: int = COLS) -> list[str]:
    """Word-wrap text, truncating words longer than the width."""
    if not text.strip():
        return [""]

    lines: list[str] = []
    for paragraph in text.split("\n"):
        if not paragraph.strip():
            lines.append("")
            continue

        current = ""
        for word in paragraph.split(" "):
            if not word:
                continue
            candidate = f"{current} {word}" if current else word
            if len(candidate) <= width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = word[:width]
        if current:
            lines.append(current)

    return lines or [""]


def center_text(text: str, width: int = COLS) -> str:
    if len(text) >= width:
        return text[:width]
    left = (width - len(text)) // 2
    return " " * left + text + " " * (width - len(text) - left)


def text_to_layout(text: str) -> list[list[int]]:
    """Convert text into a centered 6x22 grid of character codes.

    Args:
        text: Text to render; newlines start new rows

    Returns:
        Six rows of 22 codes; text past the last row is dropped
    """
    layout = [[0] * COLS for _ in range(ROWS)]
    if not text:
        return layout

    lines: list[str] = []
    for line in text.split("\n"):
        lines.extend(wrap_text(line, COLS))
    lines = lines[:ROWS]

    top = (ROWS - len(lines)) // 2
    for offset, line in enumerate(lines):
        layout[top + offset] = [char_to_code(char) for char in center_text(line, COLS)]
    return layout


def layout_to_text(layout: list[list[int]]) -> str:
    """Render a grid of codes back to text, dropping trailing blanks."""
    lines = ["".join(code_to_char(code) for code in row).rstrip() for row in layout]
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines)
