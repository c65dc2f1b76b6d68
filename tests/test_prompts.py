"""Tests for prompt templates."""

import pytest

from jobmail.prompts import (
    CLASSIFY_TEMPLATE,
    DESCRIPTION_TEMPLATE,
    SALARY_TEMPLATE,
    PromptRenderer,
    PromptTemplateError,
    render_prompt,
)


class TestPromptRenderer:
    """Tests for PromptRenderer."""

    def test_description_prompt(self):
        prompt = render_prompt(DESCRIPTION_TEMPLATE, title="Senior Engineer", text="Build pipelines.")

        assert "Job Title: Senior Engineer" in prompt
        assert "Build pipelines." in prompt

    def test_salary_prompt_keeps_json_example(self):
        prompt = render_prompt(SALARY_TEMPLATE, text="€60k")

        assert '{"min": <number or null>' in prompt

    def test_classify_prompt_defaults(self):
        prompt = render_prompt(CLASSIFY_TEMPLATE, sender=None, subject="", body="x" * 3000)

        assert "From: Unknown" in prompt
        assert "Subject: (no subject)" in prompt
        assert "x" * 1500 in prompt
        assert "x" * 1501 not in prompt

    def test_no_html_escaping(self):
        prompt = render_prompt(DESCRIPTION_TEMPLATE, title="R&D <Lead>", text="")
        assert "R&D <Lead>" in prompt

    def test_missing_variable(self):
        with pytest.raises(PromptTemplateError, match="describe_posting"):
            PromptRenderer().render(DESCRIPTION_TEMPLATE, title="Only a title")

    def test_unknown_template(self):
        with pytest.raises(PromptTemplateError):
            PromptRenderer().render("missing.txt.j2")
