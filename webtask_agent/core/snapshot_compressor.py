"""Accessibility snapshot compression.

Browsers report page state as a line-oriented accessibility tree::

    - listitem:
      - link "Home" [ref=e12]:
        - /url: /home
    - heading "Results" [level=2] [ref=e14]
    - text: 42 items

The ``SnapshotCompressor`` shortens this text before it is sent to the
model while keeping every ``[ref=ID]`` marker intact, so the model can
still address each element.  Each line goes through these steps, in
order:

1. Trim whitespace and strip the leading list dash.
2. Drop lines starting with a filtered prefix (``/url:`` by default).
3. Apply regex rewrites of common roles (``listitem`` -> ``li``,
   ``link`` -> ``a``, headings -> ``hN``, text nodes -> bare strings).
4. Drop empty lines.
5. Replace the quoted text of a line by ``[same as above]`` when it
   repeats the quoted text of the line immediately before it.

The transform is a pure function of its configuration and input.

Typical usage::

    from webtask_agent.core.snapshot_compressor import SnapshotCompressor

    compressor = SnapshotCompressor()
    result = compressor.compress_with_metrics(raw_snapshot)
    print(result.text, result.compression_ratio)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# Marker substituted for repeated quoted text.
SAME_AS_ABOVE: str = "[same as above]"

# (pattern, replacement) pairs applied to each line in order.
DEFAULT_TRANSFORMATIONS: tuple[tuple[str, str], ...] = (
    (r"^listitem", "li"),
    (r"^link", "a"),
    (r"^text: (.*?)$", r'"\1"'),
    (r'^heading "([^"]+)" \[level=(\d+)\]', r'h\2 "\1"'),
)

DEFAULT_FILTERED_PREFIXES: tuple[str, ...] = ("/url:",)

_LIST_DASH = re.compile(r"^- ")

# prefix, first quoted text, suffix.
_QUOTED = re.compile(r'^([^"]*)"([^"]+)"(.*)$')


@dataclass
class CompressorConfig:
    """Rewrite rules of a ``SnapshotCompressor``.

    Attributes:
        transformations: ``(pattern, replacement)`` pairs, applied to
            every line in order.  Replacements use ``re.sub`` syntax.
        filtered_prefixes: Lines starting with any of these (after the
            list dash is stripped) are dropped.
    """

    transformations: list[tuple[str, str]] = field(
        default_factory=lambda: list(DEFAULT_TRANSFORMATIONS)
    )
    filtered_prefixes: list[str] = field(
        default_factory=lambda: list(DEFAULT_FILTERED_PREFIXES)
    )


@dataclass
class CompressionResult:
    """Compressed snapshot together with size statistics.

    Attributes:
        text: The compressed snapshot.
        original_size: UTF-8 byte length of the input.
        compressed_size: UTF-8 byte length of the output.
        compression_ratio: ``1 - compressed/original`` (0 for empty
            input).
        lines_removed: Input lines absent from the output.
        transformations_applied: Rewrite rules that matched, summed
            over all lines.
        duplicates_removed: Lines collapsed to ``[same as above]``.
    """

    text: str
    original_size: int
    compressed_size: int
    compression_ratio: float
    lines_removed: int
    transformations_applied: int
    duplicates_removed: int


class SnapshotCompressor:
    """Shortens accessibility snapshots for the model prompt.

    Args:
        config: Rewrite rules.  Defaults to the built-in role
            abbreviations and the ``/url:`` filter.
    """

    def __init__(self, config: CompressorConfig | None = None) -> None:
        self._config = config or CompressorConfig()
        self._compiled = [
            (re.compile(pattern), repl)
            for pattern, repl in self._config.transformations
        ]

    # -- Configuration ---------------------------------------------------

    def add_transformation(self, pattern: str, replacement: str) -> None:
        """Append a rewrite rule applied after the existing ones."""
        self._config.transformations.append((pattern, replacement))
        self._compiled.append((re.compile(pattern), replacement))

    def add_filtered_prefix(self, prefix: str) -> None:
        """Drop lines starting with *prefix* from now on."""
        self._config.filtered_prefixes.append(prefix)

    @property
    def config(self) -> CompressorConfig:
        """A copy of the current rules."""
        return CompressorConfig(
            transformations=list(self._config.transformations),
            filtered_prefixes=list(self._config.filtered_prefixes),
        )

    # -- Compression -----------------------------------------------------

    def compress(self, snapshot: str) -> str:
        """Return the compressed form of *snapshot*."""
        return self.compress_with_metrics(snapshot).text

    def compress_with_metrics(self, snapshot: str) -> CompressionResult:
        """Compress *snapshot* and report how much was saved."""
        if not snapshot:
            return CompressionResult(
                text="",
                original_size=0,
                compressed_size=0,
                compression_ratio=0.0,
                lines_removed=0,
                transformations_applied=0,
                duplicates_removed=0,
            )

        input_lines = snapshot.split("\n")
        output: list[str] = []
        transformations = 0
        duplicates = 0
        last_quoted: str | None = None

        for raw_line in input_lines:
            line = _LIST_DASH.sub("", raw_line.strip())

            if any(line.startswith(p) for p in self._config.filtered_prefixes):
                continue

            for pattern, repl in self._compiled:
                line, count = pattern.subn(repl, line)
                transformations += count

            if not line:
                continue

            # A line already carrying the marker continues the run of
            # the text before it.
            if SAME_AS_ABOVE in line:
                output.append(line)
                continue

            match = _QUOTED.match(line)
            if match is None:
                last_quoted = None
            elif match.group(2) == last_quoted:
                line = f"{match.group(1)}{SAME_AS_ABOVE}{match.group(3)}"
                duplicates += 1
            else:
                last_quoted = match.group(2)
            output.append(line)

        text = "\n".join(output)
        original_size = len(snapshot.encode("utf-8"))
        compressed_size = len(text.encode("utf-8"))
        return CompressionResult(
            text=text,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=1.0 - compressed_size / original_size,
            lines_removed=len(input_lines) - len(output),
            transformations_applied=transformations,
            duplicates_removed=duplicates,
        )
