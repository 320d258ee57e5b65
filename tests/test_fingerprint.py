"""Tests for content fingerprinting and whitespace normalization."""

from __future__ import annotations

import re

from relayguard.dedup.fingerprint import (
    FINGERPRINT_LENGTH,
    Correlation,
    fingerprint,
    normalize_content,
)


class TestNormalizeContent:
    def test_collapses_runs_and_trims(self) -> None:
        assert normalize_content("  hello \t\n  world  ") == "hello world"

    def test_empty_and_whitespace_only(self) -> None:
        assert normalize_content("") == ""
        assert normalize_content(" \n\t ") == ""

    def test_inner_single_spaces_untouched(self) -> None:
        assert normalize_content("a b c") == "a b c"


class TestFingerprint:
    def test_fixed_length_hex(self) -> None:
        fp = fingerprint("a", "b", "hello")
        assert len(fp) == FINGERPRINT_LENGTH
        assert re.fullmatch(r"[0-9a-f]+", fp)

    def test_deterministic(self) -> None:
        assert fingerprint("a", "b", "hello") == fingerprint("a", "b", "hello")

    def test_whitespace_variants_collide(self) -> None:
        assert fingerprint("a", "b", "hello   world") == fingerprint("a", "b", "hello world")
        assert fingerprint("a", "b", "\nhello world\n") == fingerprint("a", "b", "hello world")

    def test_case_and_punctuation_matter(self) -> None:
        assert fingerprint("a", "b", "Hello world") != fingerprint("a", "b", "hello world")
        assert fingerprint("a", "b", "hello world.") != fingerprint("a", "b", "hello world")

    def test_route_participates(self) -> None:
        base = fingerprint("a", "b", "hello")
        assert fingerprint("a", "c", "hello") != base
        assert fingerprint("c", "b", "hello") != base
        # Direction matters: a→b and b→a are different conversations.
        assert fingerprint("b", "a", "hello") != base

    def test_field_boundaries_do_not_blur(self) -> None:
        assert fingerprint("ab", "c", "x") != fingerprint("a", "bc", "x")

    def test_correlation_participates(self) -> None:
        base = fingerprint("a", "b", "status?")
        with_task = fingerprint("a", "b", "status?", Correlation(task_id="t1"))
        with_seq = fingerprint("a", "b", "status?", Correlation(task_id="t1", seq="2"))
        assert len({base, with_task, with_seq}) == 3

    def test_empty_correlation_equals_none(self) -> None:
        assert fingerprint("a", "b", "x", Correlation()) == fingerprint("a", "b", "x")
