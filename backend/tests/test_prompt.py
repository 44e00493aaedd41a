import pytest

from services.errors import InputError
from services.prompt import MAX_PROMPT_LENGTH, build_renovation_prompt, normalize_prompt


class TestNormalizePrompt:
    def test_collapses_whitespace(self):
        assert normalize_prompt("  white\n\tframes  ") == "white frames"

    @pytest.mark.parametrize("value", [None, "", "   \n"])
    def test_missing(self, value):
        with pytest.raises(InputError, match="Missing prompt"):
            normalize_prompt(value)

    def test_too_long(self):
        with pytest.raises(InputError, match="too long"):
            normalize_prompt("a" * (MAX_PROMPT_LENGTH + 1))


class TestBuildRenovationPrompt:
    def test_full_choice(self):
        prompt = build_renovation_prompt("Anthracite Grey", "#383e42", "Matte")

        assert prompt.startswith(
            "Replace ONLY the window frames and doors with: Anthracite Grey (#383E42), matte, deep uPVC style."
        )
        assert "Do NOT alter walls/brickwork" in prompt
        assert "Keep lighting, geometry, reflections and perspective identical." in prompt

    def test_color_only(self):
        prompt = build_renovation_prompt("White")
        assert "with: White, deep uPVC style." in prompt

    def test_rejects_bad_hex(self):
        with pytest.raises(InputError):
            build_renovation_prompt("Grey", "#12345")

    def test_requires_color(self):
        with pytest.raises(InputError):
            build_renovation_prompt("  ")
