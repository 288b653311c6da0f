"""
Configuration settings for the LeadMailer outreach pipeline.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Base directory
BASE_DIR = Path(__file__).resolve().parent.parent

# API Keys and credentials
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")

# Database configuration
DATABASE_PATH = BASE_DIR / "data" / "leadmailer.db"
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_PATH}")

# Logging configuration
LOG_DIR = BASE_DIR / "logs"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE")  # Optional, console only when unset

# HTTP settings
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "15"))  # seconds per page fetch
USER_AGENT = os.getenv("USER_AGENT", "Mozilla/5.0 (compatible; LeadMailerBot/1.0)")

# Crawler settings
CRAWLER_MAX_PAGES = int(os.getenv("CRAWLER_MAX_PAGES", "10"))
CRAWLER_MAX_DEPTH = int(os.getenv("CRAWLER_MAX_DEPTH", "2"))
CRAWLER_CONCURRENCY = int(os.getenv("CRAWLER_CONCURRENCY", "5"))
CRAWLER_TIME_BUDGET = float(os.getenv("CRAWLER_TIME_BUDGET", "300"))  # seconds per site
CRAWLER_POLITENESS_DELAY = float(os.getenv("CRAWLER_POLITENESS_DELAY", "0.1"))
PAGE_SEPARATOR = "\n\n<!-- PAGE_SEPARATOR -->\n\n"

# Paths never worth fetching
CRAWLER_SKIP_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".css", ".js",
    ".zip", ".rar", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".mp4", ".mp3"
)

# Validation settings
DNS_TIMEOUT = float(os.getenv("DNS_TIMEOUT", "5"))
DISPOSABLE_EMAIL_DOMAINS = [
    "tempmail.com", "guerrillamail.com", "10minutemail.com", "mailinator.com",
    "throwaway.email", "yopmail.com", "trashmail.com", "getnada.com",
    "sharklasers.com", "dispostable.com", "maildrop.cc", "temp-mail.org",
    "fakeinbox.com", "mintemail.com", "mailnesia.com",
]

# Duplicate prevention settings
CONTACT_COOLDOWN_DAYS = int(os.getenv("CONTACT_COOLDOWN_DAYS", "90"))
SITE_COOLDOWN_DAYS = int(os.getenv("SITE_COOLDOWN_DAYS", "30"))
MAX_SENDS_PER_SITE = int(os.getenv("MAX_SENDS_PER_SITE", "3"))
MAX_SENDS_PER_EMAIL_DOMAIN = int(os.getenv("MAX_SENDS_PER_EMAIL_DOMAIN", "2"))

# Sender account settings
SENDER_HEALTH_THRESHOLD = float(os.getenv("SENDER_HEALTH_THRESHOLD", "70"))  # percent
SMTP_TIMEOUT = float(os.getenv("SMTP_TIMEOUT", "30"))

# Sending window (local hours, start inclusive, end exclusive)
SENDING_WINDOW_START = int(os.getenv("SENDING_WINDOW_START", "8"))
SENDING_WINDOW_END = int(os.getenv("SENDING_WINDOW_END", "17"))

# Review queue settings
REVIEW_DEFAULT_PRIORITY = 50
REVIEW_RETENTION_DAYS = int(os.getenv("REVIEW_RETENTION_DAYS", "90"))

# Email template settings
SENDER_NAME = os.getenv("SENDER_NAME", "Our Team")
SENDER_COMPANY = os.getenv("SENDER_COMPANY", "Company")
AI_CONTENT_LIMIT = 2000  # characters of site content handed to the model
AI_TIMEOUT = float(os.getenv("AI_TIMEOUT", "30"))

# Multi-language job titles, first match wins
POSITION_TITLES = [
    # English
    "CEO", "CTO", "CFO", "COO", "Director", "Manager", "Founder", "Co-Founder",
    "President", "VP", "Vice President", "Head", "Lead", "Chief",
    # Dutch
    "Directeur", "Oprichter", "Medeoprichter", "Hoofd",
    "Eigenaar", "Zaakvoerder", "Bedrijfsleider", "Bestuurder",
    # German
    "Geschäftsführer", "Gründer", "Leiter", "Direktor",
    # French
    "Fondateur", "Gérant", "Président",
    # Spanish
    "Fundador", "Gerente", "Presidente",
]

# Multi-language URL patterns per page type
URL_PATTERNS = {
    "contact": {
        "en": ["contact", "contact-us", "contactus", "get-in-touch", "reach-us",
               "contact-form", "contact-page", "contacts"],
        "nl": ["contacteer-ons", "contacteer", "neem-contact-op", "contact-opnemen",
               "contactformulier", "contactpagina", "bereik-ons"],
        "de": ["kontakt", "kontaktieren", "kontaktformular", "kontaktseite",
               "kontaktiere-uns", "kontakt-aufnehmen"],
        "fr": ["contactez-nous", "nous-contacter", "formulaire-contact", "page-contact", "contactez"],
        "es": ["contacto", "contactanos", "contacta-con-nosotros", "formulario-contacto",
               "pagina-contacto", "contactar"],
        "it": ["contatto", "contattaci", "contatta", "modulo-contatto", "pagina-contatto"],
    },
    "about": {
        "en": ["about", "about-us", "aboutus", "about-me", "who-we-are", "our-story",
               "company", "about-company"],
        "nl": ["over-ons", "overons", "wie-zijn-wij", "wie-we-zijn", "ons-verhaal",
               "bedrijf", "over-het-bedrijf", "organisatie"],
        "de": ["uber-uns", "uberuns", "unsere-geschichte", "firma", "unternehmen"],
        "fr": ["a-propos", "apropos", "qui-sommes-nous", "notre-histoire", "entreprise", "societe"],
        "es": ["acerca", "acerca-de", "sobre-nosotros", "quienes-somos", "nuestra-historia",
               "empresa", "compania"],
        "it": ["chi-siamo", "su-di-noi", "la-nostra-storia", "azienda", "societa"],
    },
    "team": {
        "en": ["team", "our-team", "the-team", "meet-the-team", "staff", "people",
               "leadership", "management"],
        "nl": ["ons-team", "het-team", "medewerkers", "personeel", "mensen", "leiderschap", "staf"],
        "de": ["unser-team", "mitarbeiter", "personal", "fuhrung", "leitung"],
        "fr": ["equipe", "notre-equipe", "collaborateurs", "direction"],
        "es": ["equipo", "nuestro-equipo", "empleados", "liderazgo", "gestion"],
        "it": ["squadra", "il-nostro-team", "personale", "collaboratori", "dirigenza"],
    },
    "services": {
        "en": ["services", "our-services", "what-we-do", "solutions", "products", "offerings"],
        "nl": ["diensten", "onze-diensten", "wat-wij-doen", "oplossingen", "producten", "aanbod"],
        "de": ["dienstleistungen", "leistungen", "losungen", "produkte", "angebot"],
        "fr": ["nos-services", "prestations", "produits", "offres"],
        "es": ["servicios", "nuestros-servicios", "soluciones", "productos", "ofertas"],
        "it": ["servizi", "i-nostri-servizi", "soluzioni", "prodotti", "offerte"],
    },
    "careers": {
        "en": ["careers", "jobs", "work-with-us", "join-us", "opportunities", "employment", "vacancies"],
        "nl": ["carriere", "vacatures", "werken-bij", "werk-bij-ons", "banen"],
        "de": ["karriere", "stellenangebote", "arbeiten-bei-uns"],
        "fr": ["carrieres", "emplois", "travailler-avec-nous", "rejoignez-nous", "recrutement"],
        "es": ["carreras", "empleos", "trabaja-con-nosotros", "vacantes"],
        "it": ["carriere", "lavoro", "lavora-con-noi", "posizioni-aperte"],
    },
    "blog": {
        "en": ["blog", "news", "articles", "insights", "updates"],
        "nl": ["nieuws", "artikelen", "inzichten", "actueel"],
        "de": ["nachrichten", "neuigkeiten", "artikel", "aktuelles"],
        "fr": ["actualites", "nouvelles"],
        "es": ["noticias", "articulos", "novedades"],
        "it": ["notizie", "articoli", "novita"],
    },
    "faq": {
        "en": ["faq", "faqs", "frequently-asked-questions", "help", "support", "questions"],
        "nl": ["veelgestelde-vragen", "vragen", "hulp", "ondersteuning"],
        "de": ["haufig-gestellte-fragen", "hilfe", "unterstutzung"],
        "fr": ["questions-frequentes", "aide", "assistance"],
        "es": ["preguntas-frecuentes", "ayuda", "soporte", "asistencia"],
        "it": ["domande-frequenti", "aiuto", "supporto", "assistenza"],
    },
    "privacy": {
        "en": ["privacy", "privacy-policy", "privacy-statement", "data-protection"],
        "nl": ["privacybeleid", "privacyverklaring", "gegevensbescherming", "avg"],
        "de": ["datenschutz", "datenschutzerklarung", "privatsphare"],
        "fr": ["confidentialite", "politique-de-confidentialite", "protection-des-donnees"],
        "es": ["privacidad", "politica-de-privacidad", "proteccion-de-datos"],
        "it": ["politica-privacy", "protezione-dati"],
    },
    "terms": {
        "en": ["terms", "terms-and-conditions", "terms-of-service", "tos", "legal", "terms-of-use"],
        "nl": ["voorwaarden", "algemene-voorwaarden", "gebruiksvoorwaarden", "juridisch"],
        "de": ["agb", "nutzungsbedingungen", "rechtliches"],
        "fr": ["conditions", "conditions-generales", "mentions-legales"],
        "es": ["terminos", "terminos-y-condiciones", "condiciones-de-uso"],
        "it": ["termini", "termini-e-condizioni", "note-legali"],
    },
}

# Checked in this order, first match wins
PAGE_TYPE_ORDER = [
    "contact", "about", "team", "services", "careers", "blog", "faq", "privacy", "terms",
]

# Higher scores indicate more reliable contact sources
PAGE_TYPE_PRIORITY = {
    "contact": 30,
    "team": 25,
    "about": 20,
    "careers": 18,
    "services": 15,
    "header": 15,
    "faq": 12,
    "blog": 10,
    "footer": 10,
    "privacy": 5,
    "terms": 5,
    "body": 5,
}

ENABLED_LANGUAGES = ["en", "nl", "de", "fr", "es", "it"]


@dataclass(frozen=True)
class CrawlerSettings:
    max_pages: int = CRAWLER_MAX_PAGES
    max_depth: int = CRAWLER_MAX_DEPTH
    concurrency: int = CRAWLER_CONCURRENCY
    time_budget: float = CRAWLER_TIME_BUDGET
    fetch_timeout: float = HTTP_TIMEOUT
    politeness_delay: float = CRAWLER_POLITENESS_DELAY
    user_agent: str = USER_AGENT
    skip_extensions: Tuple[str, ...] = CRAWLER_SKIP_EXTENSIONS


@dataclass(frozen=True)
class ExtractionSettings:
    position_titles: Tuple[str, ...] = tuple(POSITION_TITLES)
    url_patterns: Dict[str, Dict[str, List[str]]] = field(default_factory=lambda: URL_PATTERNS)
    page_type_order: Tuple[str, ...] = tuple(PAGE_TYPE_ORDER)
    page_type_priority: Dict[str, int] = field(default_factory=lambda: dict(PAGE_TYPE_PRIORITY))
    enabled_languages: Tuple[str, ...] = tuple(ENABLED_LANGUAGES)
    context_length: int = 200


@dataclass(frozen=True)
class ValidationSettings:
    disposable_domains: Tuple[str, ...] = tuple(DISPOSABLE_EMAIL_DOMAINS)
    dns_timeout: float = DNS_TIMEOUT


@dataclass(frozen=True)
class SuppressionSettings:
    contact_cooldown_days: int = CONTACT_COOLDOWN_DAYS
    site_cooldown_days: int = SITE_COOLDOWN_DAYS
    max_sends_per_site: int = MAX_SENDS_PER_SITE
    max_sends_per_email_domain: int = MAX_SENDS_PER_EMAIL_DOMAIN
    exclude_self_from_domain_cap: bool = False


@dataclass(frozen=True)
class RotationSettings:
    health_threshold: float = SENDER_HEALTH_THRESHOLD


@dataclass(frozen=True)
class SendingWindow:
    start_hour: int = SENDING_WINDOW_START
    end_hour: int = SENDING_WINDOW_END


@dataclass(frozen=True)
class ReviewSettings:
    default_priority: int = REVIEW_DEFAULT_PRIORITY
    retention_days: int = REVIEW_RETENTION_DAYS
    high_priority_contact: int = 75
    first_contact_priority: int = 60
    ai_content_priority: int = 70


@dataclass(frozen=True)
class AISettings:
    api_key: str = GEMINI_API_KEY or ""
    model: str = GEMINI_MODEL
    timeout: float = AI_TIMEOUT
    content_limit: int = AI_CONTENT_LIMIT
    sender_name: str = SENDER_NAME
    sender_company: str = SENDER_COMPANY
