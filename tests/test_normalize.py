"""Tests for llkb.learning.normalize."""

from __future__ import annotations

import pytest

from llkb.learning.normalize import count_lines, hash_code, normalize_code, tokenize

SAMPLES = [
    "await page.click('#submit')",
    'const total = await page.locator("tr").count();',
    "let   retries = 3;\n\n  await page.waitForTimeout(1500)",
    "await page.fill(`#name-${index}`, 'Ada \\'Lovelace\\'')",
    "",
    "   ",
    "var x = 'a' + \"b\" + 12.5",
]


class TestNormalizeCode:
    """Canonical form of snippets."""

    def test_string_literals_replaced(self):
        assert normalize_code("page.click('#a')") == "page.click(<STRING>)"
        assert normalize_code('page.click("#a")') == "page.click(<STRING>)"
        assert normalize_code("page.click(`#a`)") == "page.click(<STRING>)"

    def test_numbers_replaced(self):
        assert normalize_code("page.waitForTimeout(5000)") == "page.waitForTimeout(<NUMBER>)"
        assert normalize_code("x = 1.25") == "x = <NUMBER>"

    def test_numbers_inside_identifiers_kept(self):
        assert normalize_code("item2.click()") == "item2.click()"

    def test_declared_names_replaced(self):
        assert normalize_code("const total = 1") == "const <VAR> = <NUMBER>"
        assert normalize_code("let rows = page.locator(x)") == "let <VAR> = page.locator(x)"

    def test_whitespace_collapsed(self):
        assert normalize_code("  await\n\tpage.reload()  ") == "await page.reload()"

    def test_structurally_equal_snippets_match(self):
        a = "const a = await page.locator('#one').count()"
        b = "const bb   =  await page.locator(\"#two\").count()"
        assert normalize_code(a) == normalize_code(b)

    @pytest.mark.parametrize("code", SAMPLES)
    def test_idempotent(self, code: str):
        once = normalize_code(code)
        assert normalize_code(once) == once


class TestFingerprint:
    def test_stable_and_short(self):
        fingerprint = hash_code("await page.click(<STRING>)")
        assert fingerprint == hash_code("await page.click(<STRING>)")
        assert len(fingerprint) == 16
        int(fingerprint, 16)

    def test_differs_for_different_patterns(self):
        assert hash_code("a") != hash_code("b")


class TestTokenize:
    def test_splits_on_punctuation(self):
        assert tokenize("await page.click(<STRING>);") == {"await", "page", "click", "STRING"}

    def test_empty(self):
        assert tokenize("") == set()


class TestCountLines:
    def test_ignores_blank_lines(self):
        assert count_lines("a()\n\n   \nb()\n") == 2
        assert count_lines("") == 0
