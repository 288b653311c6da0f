"""
AI text generation for outreach emails using Google Gemini.
"""
from typing import Dict, Any, Optional
import google.generativeai as genai

from leadmailer.config import AISettings
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)

SYSTEM_INSTRUCTION = "You are a professional email copywriter specializing in personalized outreach emails."


class GeminiTextGenerator:
    """Generate email bodies and subject lines; every failure comes back as None."""

    def __init__(self, settings: AISettings = None):
        """
        Initialize the generator.

        Args:
            settings: API key, model name and request timeout
        """
        self.settings = settings or AISettings()
        self.model = None
        self.is_setup = False

    def setup(self) -> bool:
        """
        Configure the Gemini client.

        Returns:
            True if the client is ready, False otherwise
        """
        if self.is_setup:
            return True
        if not self.settings.api_key:
            logger.warning("GEMINI_API_KEY is not set, AI generation disabled")
            return False
        try:
            genai.configure(api_key=self.settings.api_key)
            self.model = genai.GenerativeModel(self.settings.model, system_instruction=SYSTEM_INSTRUCTION)
            self.is_setup = True
            logger.info(f"Gemini model {self.settings.model} configured for email generation")
            return True
        except Exception as e:
            logger.error(f"Failed to configure Gemini API: {e}")
            return False

    def _generate(self, prompt: str, temperature: float, max_tokens: int) -> Optional[str]:
        if not self.setup():
            return None
        try:
            response = self.model.generate_content(
                prompt,
                generation_config=genai.GenerationConfig(temperature=temperature, max_output_tokens=max_tokens),
                request_options={"timeout": self.settings.timeout}
            )
            text = (response.text or "").strip()
            return text or None
        except Exception as e:
            logger.error(f"Gemini generation failed: {e}")
            return None

    def generate_email(self, instructions: str, website_content: str, context: Dict[str, Any],
                       tone: str = None, max_tokens: int = None) -> Optional[str]:
        """
        Generate a personalized email body.

        Args:
            instructions: What the email should achieve
            website_content: Excerpt of the recipient's website
            context: website_url, website_title, platform, contact_name
            tone: Writing tone, defaults to professional
            max_tokens: Output token limit, defaults to 500

        Returns:
            Email body, or None on failure
        """
        context_lines = "\n".join(f"{key}: {value}" for key, value in context.items())
        prompt = f"""
Write a personalized email based on the following:

TONE: {tone or 'professional'}

INSTRUCTIONS:
{instructions}

WEBSITE CONTEXT:
{context_lines}

WEBSITE CONTENT:
{website_content}

Generate only the email content without subject line. Keep it concise and personalized.
"""
        return self._generate(prompt, temperature=0.7, max_tokens=max_tokens or 500)

    def generate_subject(self, website_title: str, context: str = "", tone: str = None) -> Optional[str]:
        """Generate a subject line of at most 60 characters, or None on failure."""
        prompt = f"""
Generate a compelling email subject line for an outreach email to: {website_title}

Context: {context}
Tone: {tone or 'professional'}

Generate only the subject line, no quotes, maximum 60 characters.
"""
        subject = self._generate(prompt, temperature=0.8, max_tokens=50)
        if not subject:
            return None
        return subject.replace('"', "").replace("'", "").strip()[:60] or None
