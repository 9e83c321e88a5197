"""Minimal printf-style formatting and an in-memory line console."""

from __future__ import annotations

from typing import Callable, Iterable

WORD_BITS = 32
_WORD_MASK = (1 << WORD_BITS) - 1
SIGNED_BASE = 10
NIL = "(nil)"
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"

MEM_WRITER_LINES = 32
MEM_WRITER_LINE_LENGTH = 64


def pow_int(base: int, exp: int) -> int:
    """Integer power by repeated squaring; exp must be non-negative."""
    if exp < 0:
        raise ValueError("exponent must be non-negative")
    if exp == 0:
        return 1
    half = pow_int(base, exp // 2)
    return (1 if exp % 2 == 0 else base) * half * half


def itoa(value: int, base: int = SIGNED_BASE) -> str:
    """Render value in base; only base 10 shows a sign, others use 32-bit words."""
    if not 2 <= base <= len(_DIGITS):
        raise ValueError(f"unsupported base {base}")
    sign = ""
    if value < 0:
        if base == SIGNED_BASE:
            sign = "-"
            value = -value
        else:
            value &= _WORD_MASK
    if value == 0:
        return "0"
    digits = []
    while value:
        value, r = divmod(value, base)
        digits.append(_DIGITS[r])
    return sign + "".join(reversed(digits))


def binary(value: int) -> str:
    """The 32 bits of value, most significant first."""
    return format(value & _WORD_MASK, f"0{WORD_BITS}b")


def _to_int32(value: int) -> int:
    value &= _WORD_MASK
    return value - (1 << WORD_BITS) if value >> (WORD_BITS - 1) else value


def _char_of(value: object) -> str:
    if isinstance(value, str):
        return value[:1]
    c = chr(int(value) & 0xFF)
    return "" if c == "\0" else c


def _pieces(fmt: str, args: Iterable[object]) -> Iterable[str]:
    """Yield the text produced by each character or directive of fmt."""
    arg_iter = iter(args)

    def next_arg() -> object:
        try:
            return next(arg_iter)
        except StopIteration:
            raise ValueError(f"not enough arguments for format {fmt!r}") from None

    chars = iter(fmt)
    for ch in chars:
        if ch != "%":
            yield ch
            continue
        spec = next(chars, "")
        if spec == "s":
            yield str(next_arg())
        elif spec == "c":
            yield _char_of(next_arg())
        elif spec == "d":
            yield itoa(_to_int32(int(next_arg())), 10)
        elif spec == "p":
            ptr = next_arg()
            if ptr is None or ptr == 0:
                yield NIL
            else:
                yield "0x" + itoa(int(ptr), 16)
        elif spec == "b":
            yield binary(int(next_arg()))
        elif spec == "%":
            yield "%"
        else:
            yield "%" + spec


def _render(fmt: str, args: Iterable[object], write: Callable[[str], int]) -> int:
    """Feed each piece to write; stop as soon as a write produces nothing."""
    total = 0
    for piece in _pieces(fmt, args):
        written = write(piece)
        if not written:
            break
        total += written
    return total


def format_message(fmt: str, *args: object) -> str:
    """Format with %s %c %d %p %b %%; an empty piece ends the output."""
    out: list[str] = []

    def write(piece: str) -> int:
        out.append(piece)
        return len(piece)

    _render(fmt, args, write)
    return "".join(out)


def snprintf(size: int, fmt: str, *args: object) -> str:
    """Format into a buffer of size bytes, one of them kept for the terminator."""
    if size < 1:
        raise ValueError("buffer size must be at least 1")
    capacity = size - 1
    out: list[str] = []
    used = 0

    def write(piece: str) -> int:
        nonlocal used
        chunk = piece[: capacity - used]
        out.append(chunk)
        used += len(chunk)
        return len(chunk)

    _render(fmt, args, write)
    return "".join(out)


class MemoryConsole:
    """A ring of fixed-width text lines written character by character."""

    def __init__(
        self, lines: int = MEM_WRITER_LINES, line_length: int = MEM_WRITER_LINE_LENGTH
    ) -> None:
        if lines < 2 or line_length < 1:
            raise ValueError("console needs at least two lines of one column")
        self.lines = lines
        self.line_length = line_length
        self.buffer = [[" "] * line_length for _ in range(lines)]
        self.line = 0
        self.ch = 0

    def _clean_line(self, line: int, fill: str) -> None:
        self.buffer[line] = [fill] * self.line_length

    def _next_line(self) -> None:
        self.line = (self.line + 1) % self.lines
        self.ch = 0
        self._clean_line(self.line, " ")
        self._clean_line((self.line + 1) % self.lines, "-")

    def _put(self, c: str) -> None:
        if c == "\n":
            self._next_line()
            return
        self.buffer[self.line][self.ch] = c
        self.ch += 1
        if self.ch >= self.line_length:
            self._next_line()

    def write(self, data: str) -> int:
        """Write data up to any NUL; return the number of characters written."""
        if self.line == 0 and self.ch == 0:
            self._clean_line(0, " ")
            self._clean_line(1, " ")
        text = data.split("\0", 1)[0]
        for c in text:
            self._put(c)
        return len(text)

    def printf(self, fmt: str, *args: object) -> int:
        """Format and write; return the number of characters written."""
        return _render(fmt, args, self.write)

    def clear(self) -> None:
        """Blank every line and move back to the start."""
        self.buffer = [[" "] * self.line_length for _ in range(self.lines)]
        self.line = 0
        self.ch = 0

    def text(self) -> str:
        """The whole buffer, one row per line."""
        return "\n".join("".join(row) for row in self.buffer)