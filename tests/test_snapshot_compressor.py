"""Tests for accessibility snapshot compression."""

from __future__ import annotations

import re

import pytest

from webtask_agent.core.snapshot_compressor import (
    SAME_AS_ABOVE,
    CompressorConfig,
    SnapshotCompressor,
)

_REALISTIC = """\
- navigation [ref=e1]:
  - list:
    - listitem:
      - link "Home" [ref=e2]:
        - /url: /
    - listitem:
      - link "Pricing" [ref=e3]:
        - /url: /pricing
- heading "Plans" [level=2] [ref=e4]
- text: Billed monthly
- button "Buy" [ref=e5]
- button "Buy" [ref=e6]"""


@pytest.fixture
def compressor() -> SnapshotCompressor:
    return SnapshotCompressor()


class TestRewrites:
    """Role abbreviations and filtering."""

    def test_listitem_becomes_li(self, compressor: SnapshotCompressor) -> None:
        """listitem lines are abbreviated to li."""
        assert compressor.compress('- listitem "Item 1"') == 'li "Item 1"'

    def test_link_becomes_a(self, compressor: SnapshotCompressor) -> None:
        """link lines are abbreviated to a."""
        assert compressor.compress('- link "Docs" [ref=e9]') == 'a "Docs" [ref=e9]'

    def test_heading_level(self, compressor: SnapshotCompressor) -> None:
        """Headings become hN with their text."""
        result = compressor.compress('- heading "Plans" [level=2] [ref=e4]')
        assert result == 'h2 "Plans" [ref=e4]'

    def test_text_node_becomes_string(self, compressor: SnapshotCompressor) -> None:
        """text: nodes become bare quoted strings."""
        assert compressor.compress("- text: Billed monthly") == '"Billed monthly"'

    def test_url_lines_dropped(self, compressor: SnapshotCompressor) -> None:
        """/url: lines are filtered out."""
        result = compressor.compress('- link "Home" [ref=e2]:\n  - /url: /')
        assert "/url" not in result

    def test_blank_lines_dropped(self, compressor: SnapshotCompressor) -> None:
        """Empty lines never reach the output."""
        assert compressor.compress('- button "A" [ref=e1]\n\n   \n') == 'button "A" [ref=e1]'


class TestDuplicates:
    """Collapsing of repeated quoted text."""

    def test_three_identical_links(self, compressor: SnapshotCompressor) -> None:
        """Repeats of the same text become [same as above]."""
        result = compressor.compress('- link "Same"\n- link "Same"\n- link "Same"')
        lines = result.split("\n")
        assert lines[0] == 'a "Same"'
        assert lines[1:] == [f"a {SAME_AS_ABOVE}", f"a {SAME_AS_ABOVE}"]

    def test_refs_survive_deduplication(self, compressor: SnapshotCompressor) -> None:
        """Deduplicated lines keep their own ref."""
        result = compressor.compress('- button "Buy" [ref=e5]\n- button "Buy" [ref=e6]')
        assert result.split("\n")[1] == f"button {SAME_AS_ABOVE} [ref=e6]"

    def test_only_adjacent_lines_collapse(self, compressor: SnapshotCompressor) -> None:
        """A different line in between breaks the run."""
        result = compressor.compress('- link "A"\n- link "B"\n- link "A"')
        assert SAME_AS_ABOVE not in result


class TestInvariants:
    """Properties that hold for any input."""

    def test_every_ref_preserved(self, compressor: SnapshotCompressor) -> None:
        """Every [ref=ID] of the input appears in the output."""
        refs_in = re.findall(r"\[ref=\w+\]", _REALISTIC)
        refs_out = re.findall(r"\[ref=\w+\]", compressor.compress(_REALISTIC))
        assert refs_out == refs_in

    def test_idempotent(self, compressor: SnapshotCompressor) -> None:
        """Compressing compressed output changes nothing."""
        once = compressor.compress(_REALISTIC)
        assert compressor.compress(once) == once

    def test_deterministic(self, compressor: SnapshotCompressor) -> None:
        """The same input always gives the same output."""
        assert compressor.compress(_REALISTIC) == SnapshotCompressor().compress(_REALISTIC)

    def test_empty_input(self, compressor: SnapshotCompressor) -> None:
        """An empty snapshot compresses to empty with zero ratio."""
        result = compressor.compress_with_metrics("")
        assert result.text == ""
        assert result.compression_ratio == 0.0


class TestMetrics:
    """Statistics reported by compress_with_metrics."""

    def test_sizes_and_counts(self, compressor: SnapshotCompressor) -> None:
        """Sizes shrink and removed lines are counted."""
        result = compressor.compress_with_metrics(_REALISTIC)
        assert result.compressed_size < result.original_size
        assert 0.0 < result.compression_ratio < 1.0
        assert result.lines_removed >= 2
        assert result.duplicates_removed == 1
        assert result.transformations_applied >= 5


class TestConfiguration:
    """Custom rules."""

    def test_add_transformation(self) -> None:
        """Extra rules run after the built-in ones."""
        compressor = SnapshotCompressor()
        compressor.add_transformation(r"^button", "btn")
        assert compressor.compress('- button "Go" [ref=e1]') == 'btn "Go" [ref=e1]'

    def test_add_filtered_prefix(self) -> None:
        """Extra prefixes drop matching lines."""
        compressor = SnapshotCompressor()
        compressor.add_filtered_prefix("img")
        assert compressor.compress('- img "logo"\n- button "Go"') == 'button "Go"'

    def test_empty_config_only_trims(self) -> None:
        """Without rules only dashes and whitespace are stripped."""
        compressor = SnapshotCompressor(CompressorConfig(transformations=[], filtered_prefixes=[]))
        assert compressor.compress('  - listitem "x"') == 'listitem "x"'

    def test_config_is_a_copy(self) -> None:
        """Mutating the returned config does not change the compressor."""
        compressor = SnapshotCompressor()
        compressor.config.filtered_prefixes.append("button")
        assert compressor.compress('- button "Go"') == 'button "Go"'
