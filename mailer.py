"""SMTP delivery of tracked emails."""

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate, make_msgid

logger = logging.getLogger(__name__)


class MailSendError(Exception):
    pass


class SmtpMailer:
    def __init__(self, host, port, username, password, sender_name="iSpy", use_ssl=True, timeout=30):
        self.host = host
        self.port = int(port)
        self.username = username
        self.password = password
        self.sender_name = sender_name
        self.use_ssl = use_ssl
        self.timeout = timeout

    def _connect(self):
        if self.use_ssl:
            context = ssl.create_default_context()
            return smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout)
        smtp = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
        smtp.starttls(context=ssl.create_default_context())
        return smtp

    def build_message(self, recipient, subject, html):
        msg = MIMEMultipart("alternative")
        msg["From"] = formataddr((self.sender_name, self.username))
        msg["To"] = recipient
        msg["Subject"] = subject
        msg["Date"] = formatdate(localtime=True)
        domain = self.username.split("@")[-1] if "@" in (self.username or "") else None
        msg["Message-ID"] = make_msgid(domain=domain)
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def send(self, recipient, subject, html):
        """Send one HTML email. Returns the Message-ID."""
        if not self.username or not self.password:
            raise MailSendError("SMTP credentials are not configured")

        msg = self.build_message(recipient, subject, html)
        try:
            with self._connect() as smtp:
                smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Error sending email '{subject}' to {recipient}: {e}")
            raise MailSendError(str(e)) from e

        logger.info(f"Email sent successfully: {msg['Message-ID']} to {recipient}")
        return msg["Message-ID"]
