"""Description and salary extraction from fetched job pages."""

from dataclasses import dataclass
from typing import Optional

from jobmail.clients.exceptions import ClientError
from jobmail.clients.interfaces import TextGenerator
from jobmail.clients.pages import extract_page_title, extract_raw_description, extract_salary_text
from jobmail.clients.salary import parse_salary_from_text, salary_from_json, validate_salary
from jobmail.domain.models import Salary
from jobmail.logging import get_logger
from jobmail.prompts import DESCRIPTION_TEMPLATE, SALARY_TEMPLATE, render_prompt

logger = get_logger(__name__, component="enrichment")

# Raw text shorter than this is not worth sending to the model
_MIN_TEXT_FOR_LLM = 200


@dataclass
class PageContent:
    """What could be derived from a job page.

    Attributes:
        description: Description text, None when too short to be useful
        salary: Plausible salary, None when none was found
        title: Title as shown on the page
    """

    description: Optional[str] = None
    salary: Optional[Salary] = None
    title: Optional[str] = None


class ContentExtractor:
    """Derives description and salary from page HTML.

    With a text generator, descriptions are rewritten as Markdown and salary
    is read by the model first; without one (or when the model fails or
    answers nonsense) the raw page text and the regex salary parser are used.
    """

    def __init__(
        self,
        generator: Optional[TextGenerator] = None,
        model: Optional[str] = None,
        min_description_length: int = 100,
        max_prompt_chars: int = 15000,
    ):
        self.generator = generator if model else None
        self.model = model
        self.min_description_length = min_description_length
        self.max_prompt_chars = max_prompt_chars

    def extract(self, html: str, title: Optional[str] = None) -> PageContent:
        page_title = extract_page_title(html)
        return PageContent(
            description=self.describe(html, title or page_title),
            salary=self.salary(html),
            title=page_title,
        )

    def describe(self, html: str, title: Optional[str] = None) -> Optional[str]:
        """Description text, or None when shorter than min_description_length."""
        raw = extract_raw_description(html)
        description = raw

        if self.generator is not None and len(raw) > _MIN_TEXT_FOR_LLM:
            formatted = self._format_description(raw, title)
            if formatted:
                description = formatted

        if len(description) < self.min_description_length:
            logger.debug(
                f"Description too short ({len(description)} chars), discarding",
                extra={"event": "enrichment.description.too_short"},
            )
            return None
        return description

    def salary(self, html: str) -> Optional[Salary]:
        """Plausible salary found on the page, or None."""
        text = extract_salary_text(html)

        if self.generator is not None:
            from_model = self._salary_from_model(text)
            if from_model is not None:
                return from_model

        parsed = parse_salary_from_text(text)
        if parsed.is_empty() or not validate_salary(parsed):
            return None
        return parsed

    def _format_description(self, raw: str, title: Optional[str]) -> Optional[str]:
        prompt = render_prompt(DESCRIPTION_TEMPLATE, title=title or "Not specified", text=raw[: self.max_prompt_chars])
        try:
            answer = self.generator.generate(prompt, self.model, {"temperature": 0.2, "num_predict": 2000})
        except ClientError as e:
            logger.warning(
                f"Description formatting failed, using raw text: {e}",
                extra={"event": "enrichment.description.llm_failed"},
            )
            return None

        formatted = answer.strip()
        if len(formatted) < self.min_description_length or "##" not in formatted:
            logger.debug(
                "Model answer is not a usable Markdown description",
                extra={"event": "enrichment.description.llm_rejected"},
            )
            return None
        return formatted

    def _salary_from_model(self, text: str) -> Optional[Salary]:
        prompt = render_prompt(SALARY_TEMPLATE, text=text[: self.max_prompt_chars])
        try:
            answer = self.generator.generate(prompt, self.model, {"temperature": 0.1, "num_predict": 300})
        except ClientError as e:
            logger.warning(
                f"Salary extraction by model failed, using regex: {e}",
                extra={"event": "enrichment.salary.llm_failed"},
            )
            return None

        salary = salary_from_json(answer)
        if salary is None or salary.is_empty() or (salary.min is None and salary.max is None):
            return None
        if not validate_salary(salary):
            logger.debug(
                "Model salary failed plausibility checks",
                extra={"event": "enrichment.salary.llm_rejected"},
            )
            return None
        return salary
