"""Mail source and message classifiers."""

import json
import mailbox
import re
from email import message_from_binary_file, policy
from email.message import EmailMessage
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import List, Optional

from bs4 import BeautifulSoup

from jobmail.domain.models import Classification, IncomingMessage
from jobmail.logging import get_logger
from jobmail.prompts import CLASSIFY_TEMPLATE, render_prompt
from jobmail.utils.timestamps import ensure_utc

from .exceptions import ClientConfigurationError, ClientError
from .interfaces import MailSource, MessageClassifier, TextGenerator

logger = get_logger(__name__, component="mail")

# Senders on these domains (or their subdomains) only send job or project mail
JOB_PORTAL_DOMAINS = frozenset(
    {
        "freelancermap.de",
        "freelancermap.com",
        "upwork.com",
        "freelancer.com",
        "malt.com",
        "malt.de",
        "indeed.com",
        "indeed.de",
        "stepstone.de",
        "xing.com",
        "linkedin.com",
        "glassdoor.com",
        "monster.com",
        "monster.de",
        "ziprecruiter.com",
        "dice.com",
        "wellfound.com",
        "weworkremotely.com",
        "remoteok.com",
        "greenhouse.io",
        "lever.co",
        "workday.com",
        "smartrecruiters.com",
        "recruitee.com",
        "workable.com",
        "jobvite.com",
        "hays.de",
        "hays.com",
        "randstad.de",
        "michaelpage.de",
        "adzuna.de",
        "jooble.org",
    }
)


def sender_domain(sender: Optional[str]) -> str:
    """Lowercased domain of an address like ``Jobs <alerts@mail.indeed.com>``."""
    if not sender:
        return ""
    match = re.search(r"@([^>\s]+)", sender)
    if not match:
        return ""
    return match.group(1).lower().rstrip(">)]")


def is_from_job_portal(sender: Optional[str]) -> bool:
    domain = sender_domain(sender)
    if not domain:
        return False
    return any(domain == portal or domain.endswith("." + portal) for portal in JOB_PORTAL_DOMAINS)


def _message_body(message: EmailMessage) -> str:
    """Plain-text body, falling back to the text of the HTML part."""
    part = message.get_body(preferencelist=("plain",))
    if part is not None:
        return part.get_content()
    part = message.get_body(preferencelist=("html",))
    if part is not None:
        return BeautifulSoup(part.get_content(), "lxml").get_text("\n")
    return ""


class MaildirSource(MailSource):
    """Reads messages from a local Maildir (for example one synced by mbsync or offlineimap)."""

    def __init__(self, path: str):
        if not path:
            raise ClientConfigurationError("Maildir path is not configured (set MAILDIR_PATH)")
        self.path = Path(path).expanduser()

    def fetch_messages(self, limit: int) -> List[IncomingMessage]:
        """Newest ``limit`` messages.

        Raises:
            ClientConfigurationError: If the Maildir does not exist
        """
        if not self.path.is_dir():
            raise ClientConfigurationError(f"Maildir not found: {self.path}")

        box = mailbox.Maildir(str(self.path), factory=None, create=False)
        messages: List[IncomingMessage] = []
        try:
            for key in box.iterkeys():
                with box.get_file(key) as handle:
                    parsed = message_from_binary_file(handle, policy=policy.default)
                messages.append(self._to_incoming(key, parsed))
        finally:
            box.close()

        messages.sort(
            key=lambda m: (m.received_at is not None, m.received_at.timestamp() if m.received_at else 0.0),
            reverse=True,
        )
        logger.debug(
            f"Read {len(messages)} messages from {self.path}",
            extra={"event": "mail.fetch.completed", "count": len(messages)},
        )
        return messages[:limit]

    @staticmethod
    def _to_incoming(key: str, message: EmailMessage) -> IncomingMessage:
        received_at = None
        if message["Date"]:
            try:
                received_at = ensure_utc(parsedate_to_datetime(str(message["Date"])))
            except (TypeError, ValueError):
                received_at = None

        external_id = str(message["Message-ID"] or "").strip() or key
        return IncomingMessage(
            external_id=external_id,
            subject=str(message["Subject"] or ""),
            sender=str(message["From"]) if message["From"] else None,
            body=_message_body(message),
            received_at=received_at,
        )


class KeywordClassifier(MessageClassifier):
    """Job-related when sent by a job portal or mentioning a job keyword."""

    def __init__(self, keywords: List[str]):
        self.keywords = [k.lower() for k in keywords if k]
        self._pattern = (
            re.compile(r"\b(" + "|".join(re.escape(k) for k in self.keywords) + r")\b", re.IGNORECASE)
            if self.keywords
            else None
        )

    def classify(self, message: IncomingMessage) -> Classification:
        if is_from_job_portal(message.sender):
            return Classification(
                is_job_related=True,
                confidence="high",
                reason="From known job board/freelance platform domain",
            )

        if self._pattern is None:
            return Classification(is_job_related=False, confidence="low", reason="No keywords configured")

        found = self._pattern.findall(f"{message.subject}\n{message.body[:5000]}")
        matched = sorted({m.lower() for m in found})
        if not matched:
            return Classification(is_job_related=False, confidence="medium", reason="No job keywords found")

        return Classification(
            is_job_related=True,
            confidence="high" if len(matched) >= 3 else "medium",
            matched_keywords=matched,
            reason=f"Matched keywords: {', '.join(matched)}",
        )


class LLMClassifier(MessageClassifier):
    """Asks a text generation model; unusable answers defer to a fallback classifier."""

    def __init__(self, generator: TextGenerator, model: str, fallback: MessageClassifier):
        self.generator = generator
        self.model = model
        self.fallback = fallback

    def classify(self, message: IncomingMessage) -> Classification:
        if is_from_job_portal(message.sender):
            return self.fallback.classify(message)

        prompt = render_prompt(
            CLASSIFY_TEMPLATE, sender=message.sender, subject=message.subject, body=message.body
        )
        try:
            answer = self.generator.generate(prompt, self.model, {"temperature": 0.2})
        except ClientError as e:
            logger.warning(
                f"Classifier model unavailable, using keywords: {e}",
                extra={"event": "mail.classify.fallback", "external_id": message.external_id},
            )
            return self.fallback.classify(message)

        verdict = self._parse(answer)
        if verdict is None:
            logger.info(
                "Classifier answer was not valid JSON, using keywords",
                extra={"event": "mail.classify.fallback", "external_id": message.external_id},
            )
            return self.fallback.classify(message)
        return verdict

    @staticmethod
    def _parse(answer: str) -> Optional[Classification]:
        match = re.search(r"\{[\s\S]*\}", answer or "")
        if not match:
            return None
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("isJobRelated"), bool):
            return None

        confidence = data.get("confidence")
        keywords = data.get("keywords")
        return Classification(
            is_job_related=data["isJobRelated"],
            confidence=confidence if confidence in ("high", "medium", "low") else "medium",
            matched_keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
            reason=str(data.get("reason") or "AI analysis"),
        )
