"""
Math delimiter normalizer - rewrites backend math delimiters while streaming

Backends emit LaTeX math as ``\\( ... \\)`` and ``\\[ ... \\]``; the client
renders ``$ ... $`` and ``$$ ... $$``. Fragments arrive wherever the backend
happened to flush, so the scanner keeps its code/math state between calls and
holds back a trailing partial delimiter until the next fragment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

MathPhase = Literal["none", "inline", "display"]

FENCE = "```"

# opening delimiter -> (phase it enters, replacement)
_OPENERS: dict[str, tuple[MathPhase, str]] = {
    "(": ("inline", "$"),
    "[": ("display", "$$"),
}
# closing delimiter -> (phase it must close, replacement)
_CLOSERS: dict[str, tuple[MathPhase, str]] = {
    ")": ("inline", "$"),
    "]": ("display", "$$"),
}


@dataclass
class NormalizerState:
    """Scanner state carried from one fragment to the next"""

    in_fence: bool = False
    in_inline_code: bool = False
    math_phase: MathPhase = "none"
    carry: str = ""


class MathDelimiterNormalizer:
    """Stateful delimiter rewriter; use one instance per stream"""

    def __init__(self, state: NormalizerState | None = None):
        self.state = state or NormalizerState()

    def normalize(self, chunk: str) -> str:
        return normalize_chunk(self.state, chunk)

    def flush(self) -> str:
        """Release text held back at the end of the stream"""
        carry, self.state.carry = self.state.carry, ""
        return carry


def normalize_chunk(state: NormalizerState, chunk: str) -> str:
    """Normalize one fragment, updating ``state`` in place"""
    s = state.carry + chunk
    state.carry = ""
    out: list[str] = []
    n = len(s)
    i = 0

    while i < n:
        c = s[i]

        # Hold back a trailing "\" or "``": the rest of the delimiter may
        # arrive with the next fragment.
        if i == n - 1 and c == "\\":
            state.carry = "\\"
            break
        if i == n - 2 and c == "`" and s[i + 1] == "`":
            state.carry = "``"
            break

        if not state.in_inline_code and s.startswith(FENCE, i):
            state.in_fence = not state.in_fence
            out.append(FENCE)
            i += 3
            continue

        if not state.in_fence and c == "`":
            state.in_inline_code = not state.in_inline_code
            out.append(c)
            i += 1
            continue

        if c == "\\" and not state.in_fence and not state.in_inline_code:
            nxt = s[i + 1]
            if nxt in _OPENERS and state.math_phase == "none":
                state.math_phase, replacement = _OPENERS[nxt]
                out.append(replacement)
                i += 2
                continue
            if nxt in _CLOSERS and state.math_phase == _CLOSERS[nxt][0]:
                state.math_phase = "none"
                out.append(_CLOSERS[nxt][1])
                i += 2
                continue

        out.append(c)
        i += 1

    return "".join(out)
