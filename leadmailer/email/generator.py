"""
Email rendering from templates, optionally personalized with AI.
"""
from dataclasses import dataclass
from typing import Dict, Any, Optional

from leadmailer.config import AISettings
from leadmailer.database.models import Site, ContactRecord, EmailTemplate
from leadmailer.utils.domains import clean_url
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

AI_SUBJECT_PLACEHOLDER = "{{ai_subject}}"


@dataclass
class RenderedEmail:
    subject: str
    body: str
    preheader: Optional[str] = None
    ai_generated: bool = False


class EmailGenerator:
    """Render email templates for a contact of a crawled site."""

    def __init__(self, settings: AISettings = None, text_generator=None):
        """
        Initialize the email generator.

        Args:
            settings: Sender identity and AI content limits
            text_generator: Object with generate_email() and generate_subject(),
                used for AI-enabled templates
        """
        self.settings = settings or AISettings()
        self.text_generator = text_generator

    def build_variables(self, site: Site, contact: ContactRecord,
                        extra: Dict[str, Any] = None) -> Dict[str, str]:
        """
        Placeholder values for a site and contact.

        Args:
            site: Recipient's site
            contact: Recipient
            extra: Additional placeholder values, overriding the defaults

        Returns:
            Mapping of '{{name}}' to value
        """
        url = clean_url(site.url)
        if url.startswith("www."):
            url = url[4:]
        variables = {
            "{{website_url}}": url,
            "{{website_title}}": site.title or url,
            "{{website_description}}": site.description or "",
            "{{contact_name}}": contact.name or "there",
            "{{contact_email}}": contact.email,
            "{{platform}}": (site.detected_platform or "unknown").capitalize(),
            "{{page_count}}": str(site.page_count or 0),
            "{{domain}}": site.domain or "",
            "{{sender_name}}": self.settings.sender_name,
            "{{sender_company}}": self.settings.sender_company,
        }
        for key, value in (extra or {}).items():
            placeholder = key if key.startswith("{{") else f"{{{{{key}}}}}"
            variables[placeholder] = "" if value is None else str(value)
        return variables

    @staticmethod
    def replace_variables(text: str, variables: Dict[str, str]) -> str:
        for placeholder, value in variables.items():
            text = text.replace(placeholder, value)
        return text

    def render(self, template: EmailTemplate, site: Site, contact: ContactRecord,
               extra: Dict[str, Any] = None) -> RenderedEmail:
        """
        Render a template, using AI content when the template asks for it.

        AI failures or empty results fall back to the static rendering.

        Args:
            template: Email template
            site: Recipient's site
            contact: Recipient
            extra: Additional placeholder values

        Returns:
            RenderedEmail
        """
        variables = self.build_variables(site, contact, extra)
        subject = self.replace_variables(template.subject_template, variables)
        body = self.replace_variables(template.body_template, variables)
        preheader = self.replace_variables(template.preheader, variables) if template.preheader else None
        ai_generated = False

        if template.ai_enabled:
            ai_body, ai_subject = self._generate_ai_content(template, site, contact, variables)
            if ai_body:
                body = ai_body
                ai_generated = True
            if ai_subject:
                subject = subject.replace(AI_SUBJECT_PLACEHOLDER, ai_subject)
                ai_generated = True

        # Static fallback for a subject that asked for AI
        subject = subject.replace(AI_SUBJECT_PLACEHOLDER, variables["{{website_title}}"]).strip()

        return RenderedEmail(subject=subject, body=body, preheader=preheader, ai_generated=ai_generated)

    def _generate_ai_content(self, template: EmailTemplate, site: Site, contact: ContactRecord,
                             variables: Dict[str, str]):
        if self.text_generator is None:
            logger.warning(f"Template '{template.name}' is AI-enabled but no text generator is configured")
            return None, None

        content = site.content_snapshot or ""
        if not content:
            logger.warning(f"No content snapshot for {site.domain}, using static template")
            return None, None

        context = {
            "website_url": variables["{{website_url}}"],
            "website_title": site.title,
            "platform": site.detected_platform,
            "contact_name": contact.name or "there",
        }

        body = None
        try:
            body = self.text_generator.generate_email(
                template.ai_instructions or "Write a friendly outreach email",
                content[:self.settings.content_limit],
                context,
                template.ai_tone,
                template.ai_max_tokens
            )
        except Exception as e:
            logger.warning(f"AI body generation raised for {site.domain}: {e}")
        if not body:
            logger.warning(f"AI body generation failed for {site.domain}, using static template")

        subject = None
        if AI_SUBJECT_PLACEHOLDER in (template.subject_template or ""):
            try:
                subject = self.text_generator.generate_subject(
                    site.title or variables["{{website_url}}"], "", template.ai_tone
                )
            except Exception as e:
                logger.warning(f"AI subject generation raised for {site.domain}: {e}")
            if not subject:
                logger.warning(f"AI subject generation failed for {site.domain}, using static subject")

        return body, subject

    def preview(self, template: EmailTemplate) -> RenderedEmail:
        """Render a template against sample data."""
        site = Site(
            domain="example.com",
            url="https://example.com",
            title="Example Website",
            description="A sample website for testing",
            detected_platform="wordpress",
            page_count=25,
        )
        contact = ContactRecord(name="John Doe", email="john@example.com")
        return self.render(template, site, contact)
