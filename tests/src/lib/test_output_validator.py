"""
Tests for OutputValidator (src/lib/output_validator.py).

Covers length bounds, inappropriate content, letter structure, AI-disclosure
phrases, repetition, the Portuguese sanity check, truncation, XSS stripping,
letter-specific checks and display escaping.
"""

from __future__ import annotations

from datetime import date

import pytest

from src.lib.output_validator import (
    OutputValidator,
    sanitize_for_display,
    validate_letter,
    validate_output,
)
from src.services.letter_template import compose_letter

FULL_LETTER = (
    "Viseu, 5 de março de 2024\n\n"
    "Exmo. Sr. Presidente da Câmara Municipal de Viseu\n\n"
    "Assunto: Buraco na via - Rua Direita\n\n"
    "Venho por este meio comunicar a seguinte situação:\n\n"
    "Encontra-se na Rua Direita uma cavidade de grandes dimensões no pavimento, "
    "presente há cerca de duas semanas, que representa um risco sério para a "
    "segurança dos condutores.\n\n"
    "Local: Rua Direita, 10\n"
    "Coordenadas: 40.660000, -7.910000\n\n"
    "Solicito intervenção com urgência.\n\n"
    "Com os melhores cumprimentos,\n"
    "Cidadão de Viseu"
)

PARAGRAPH = (
    "A situação descrita compromete a segurança de quem circula na via pública "
    "e exige uma intervenção dos serviços municipais competentes."
)


class TestLengthBounds:
    def test_below_minimum(self):
        text = "Texto curto mas completo, com cinquenta caracteres."
        result = validate_output(text)
        assert not result.is_valid
        assert "Output too short (minimum 100 characters)" in result.errors

    def test_above_maximum_is_warning(self):
        result = validate_output(FULL_LETTER, max_length=100)
        assert "Output exceeds recommended length of 100 characters" in result.warnings
        assert result.is_valid

    def test_non_string(self):
        result = validate_output(None)
        assert not result.is_valid
        assert result.errors == ["Output must be a non-empty string"]


class TestWellFormedLetter:
    def test_full_letter_is_valid(self):
        result = validate_output(FULL_LETTER)
        assert result.is_valid, result.errors
        assert result.warnings == []
        assert result.metadata.toxicity_score == 0

    def test_composed_letter_passes_both_checks(self, report, letter_date):
        letter = compose_letter(report, PARAGRAPH, letter_date)
        assert validate_output(letter).is_valid
        assert validate_letter(letter).is_valid

    def test_body_paragraph_without_structure(self):
        result = validate_output(PARAGRAPH, min_length=50, max_length=2000, check_structure=False)
        assert result.is_valid
        assert result.sanitized_output == PARAGRAPH


class TestInappropriateContent:
    def test_profanity_is_removed_and_scored(self):
        text = FULL_LETTER.replace("risco sério", "risco de merda")
        result = validate_output(text)
        assert not result.is_valid
        assert "Inappropriate content detected in output" in result.errors
        assert "merda" not in result.sanitized_output
        assert "[REMOVIDO]" in result.sanitized_output
        assert result.metadata.toxicity_score == 10

    def test_strict_mode_rejects(self):
        text = FULL_LETTER.replace("risco sério", "ameaça de bomba")
        result = validate_output(text, strict_mode=True)
        assert not result.is_valid
        assert result.sanitized_output == ""

    def test_spam_bait(self):
        result = validate_output(FULL_LETTER + "\nClique aqui para ganhar.")
        assert "Inappropriate content detected in output" in result.errors


class TestStructure:
    def test_missing_elements(self):
        result = validate_output(PARAGRAPH * 2)
        assert "Missing required element: Exmo." in result.errors
        assert "Missing required element: Câmara Municipal" in result.errors

    def test_ai_disclosure_is_warning(self):
        text = FULL_LETTER.replace("Venho por este meio", "Como modelo de linguagem, venho")
        result = validate_output(text)
        assert "Output contains unexpected element: modelo de linguagem" in result.warnings
        assert "Output contains unexpected element: como modelo" in result.warnings
        assert result.metadata.toxicity_score == 10
        assert "modelo de linguagem" in result.sanitized_output

    def test_ai_disclosure_stripped_in_strict_mode(self):
        text = FULL_LETTER.replace("Venho por este meio", "Desculpe, venho")
        result = validate_output(text, strict_mode=True)
        assert "Desculpe" not in result.sanitized_output

    def test_ai_matches_whole_words_only(self):
        text = FULL_LETTER.replace("risco sério", "risco cada vez mais sério")
        result = validate_output(text)
        assert not any("unexpected element: AI" in w for w in result.warnings)


class TestHeuristics:
    def test_excessive_repetition(self):
        text = "buraco " * 30 + "na estrada."
        result = validate_output(text, check_structure=False)
        assert "Output contains excessive repetition" in result.errors

    def test_repetition_ratio_needs_ten_words(self):
        assert OutputValidator.repetition_ratio("buraco buraco buraco") == 0.0

    def test_non_portuguese_text_is_warning(self):
        assert not OutputValidator.looks_portuguese("rhythm psst crypt lynx nth")
        assert OutputValidator.looks_portuguese(PARAGRAPH)

    @pytest.mark.parametrize(
        "text, truncated",
        [
            ("Solicito a reparação urgente.", False),
            ("Com os melhores", True),
            ("Com os melhores.", True),
            ("A situação é grave e", True),
            ("x" * 201 + " fim", False),
        ],
        ids=["terminal-punctuation", "incomplete-phrase", "incomplete-phrase-dot", "short-no-punctuation", "long-word-end"],
    )
    def test_truncation(self, text, truncated):
        assert OutputValidator.is_truncated(text) is truncated

    def test_truncated_output_is_error(self):
        result = validate_output(FULL_LETTER + "\n\nSolicito")
        assert "Output appears to be truncated or incomplete" in result.errors


class TestSanitization:
    def test_script_blocks_stripped(self):
        text = FULL_LETTER + "\n<script>alert(1)</script>"
        result = validate_output(text)
        assert "<script" not in result.sanitized_output

    def test_blank_lines_and_trailing_spaces_normalized(self):
        text = FULL_LETTER.replace("\n\nAssunto", "   \n\n\n\n\n\nAssunto")
        result = validate_output(text)
        assert "\n\n\n\n" not in result.sanitized_output
        assert "Viseu   \n" not in result.sanitized_output

    def test_paragraph_breaks_are_kept(self):
        result = validate_output(FULL_LETTER)
        assert result.sanitized_output == FULL_LETTER


class TestValidateLetter:
    def test_valid(self):
        result = validate_letter(FULL_LETTER)
        assert result.is_valid
        assert result.issues == []

    def test_missing_recipient(self):
        result = validate_letter(FULL_LETTER.replace("Exmo.", "Caro"))
        assert not result.is_valid
        assert "Invalid or missing recipient" in result.issues

    @pytest.mark.parametrize(
        "old, new, issue",
        [
            ("Viseu, 5 de março de 2024", "5/3/2024", "Invalid or missing date format"),
            ("Assunto:", "Tema -", "Missing subject line"),
            ("cumprimentos", "saudações", "Missing proper closing"),
            ("Coordenadas: 40.660000, -7.910000", "Coordenadas: desconhecidas", "Missing or invalid coordinates"),
        ],
        ids=["date", "subject", "closing", "coordinates"],
    )
    def test_issues(self, old, new, issue):
        assert issue in validate_letter(FULL_LETTER.replace(old, new)).issues

    def test_too_few_sections(self):
        letter = FULL_LETTER.replace("\n\n", "\n")
        assert "Letter structure appears incomplete" in validate_letter(letter).issues


class TestSanitizeForDisplay:
    def test_escapes_reserved_characters(self):
        assert sanitize_for_display("<a href=\"x\">Tom & 'Ana'</a>") == (
            "&lt;a href=&quot;x&quot;&gt;Tom &amp; &#039;Ana&#039;&lt;/a&gt;"
        )

    def test_plain_text_unchanged(self):
        assert sanitize_for_display("Rua Direita, nº 10") == "Rua Direita, nº 10"


def test_letter_date_regex_accepts_composed_date(report):
    letter = compose_letter(report, PARAGRAPH, date(2024, 12, 31))
    assert "Viseu, 31 de dezembro de 2024" in letter
    assert validate_letter(letter).is_valid
