"""
SMTP transport for outreach messages.
"""
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from leadmailer.config import SMTP_TIMEOUT
from leadmailer.database.models import SenderAccount
from leadmailer.errors import DispatchError
from leadmailer.utils.logger import get_logger

logger = get_logger(__name__)


def build_message(account: SenderAccount, to_email: str, subject: str, body: str,
                  preheader: str = None, html_body: str = None):
    """
    Build the MIME message for one recipient.

    Args:
        account: Sending account, for the From header
        to_email: Recipient
        subject: Subject line
        body: Plain text body
        preheader: Optional preview text, sent as X-Preheader
        html_body: Optional HTML alternative

    Returns:
        MIME message
    """
    if html_body:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))
    else:
        msg = MIMEText(body, "plain", "utf-8")

    msg["From"] = formataddr((account.from_name, account.from_address)) if account.from_name else account.from_address
    msg["To"] = to_email
    msg["Subject"] = subject
    if preheader:
        msg["X-Preheader"] = preheader
    return msg


class SmtpTransport:
    """Deliver messages through a sender account's SMTP server."""

    def __init__(self, timeout: float = SMTP_TIMEOUT):
        self.timeout = timeout

    def _connect(self, account: SenderAccount):
        encryption = (account.encryption or "tls").lower()
        if encryption == "ssl":
            return smtplib.SMTP_SSL(account.host, account.port, timeout=self.timeout)
        server = smtplib.SMTP(account.host, account.port, timeout=self.timeout)
        if encryption == "tls":
            server.ehlo()
            server.starttls()
        return server

    def send(self, account: SenderAccount, to_email: str, subject: str, body: str,
             preheader: str = None, html_body: str = None) -> None:
        """
        Send one message.

        Args:
            account: Sending account with SMTP credentials
            to_email: Recipient
            subject: Subject line
            body: Plain text body
            preheader: Optional preview text
            html_body: Optional HTML alternative

        Raises:
            DispatchError: on any SMTP or connection failure, with the error text
        """
        msg = build_message(account, to_email, subject, body, preheader, html_body)
        try:
            with self._connect(account) as server:
                server.ehlo()
                if account.username:
                    server.login(account.username, account.password)
                server.sendmail(account.from_address, [to_email], msg.as_string())
        except smtplib.SMTPRecipientsRefused as e:
            raise DispatchError(f"Recipients refused: {e}", bounced=True) from e
        except smtplib.SMTPException as e:
            raise DispatchError(f"SMTP error: {e}") from e
        except OSError as e:
            raise DispatchError(f"Connection to {account.host}:{account.port} failed: {e}") from e

        logger.info(f"Email sent to {to_email} via {account.name}")
