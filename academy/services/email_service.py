import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Optional

from academy.core.config import settings
from academy.reminders.dispatcher import build_fallback_email
from academy.reminders.schemas import CourseSummary, CourseType, EmailType, Recipient
from academy.utils.timezone import parse_datetime, to_local

logger = logging.getLogger(__name__)


class EmailService:
    """SMTP mailer for course reminder emails.

    Every send returns True on success and False on failure. When SMTP is not
    configured the service runs in mock mode and only logs what it would send.
    """

    def __init__(
        self,
        smtp_server: Optional[str] = None,
        smtp_port: Optional[int] = None,
        smtp_username: Optional[str] = None,
        smtp_password: Optional[str] = None,
        from_email: Optional[str] = None,
        frontend_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.smtp_server = smtp_server or settings.SMTP_SERVER
        self.smtp_port = int(smtp_port or settings.SMTP_PORT or 587)
        self.smtp_username = smtp_username or settings.SMTP_USERNAME
        self.smtp_password = smtp_password or settings.SMTP_PASSWORD
        self.from_email = from_email or settings.FROM_EMAIL or self.smtp_username
        self.frontend_url = (frontend_url or settings.FRONTEND_URL).rstrip("/")
        self.timeout = timeout or settings.SMTP_TIMEOUT_SECONDS

        self.mock_mode = not (self.smtp_server and self.smtp_username and self.smtp_password)
        if self.mock_mode:
            logger.warning("⚠️ [Email] SMTP not configured - emails will be logged, not sent")

    # --- Reminder templates ---

    def send_course_starting_reminder(self, user: Recipient, course: CourseSummary) -> bool:
        subject, text = build_fallback_email(EmailType.COURSE_STARTING, user, course)
        details = [("Starts", self._format_start(course))]
        if course.course_type == CourseType.ONLINE_LIVE:
            details.append(("Platform", course.platform or "Joining link will be shared by your instructor"))
        html = self._render_html(
            heading="Your course starts tomorrow!",
            user=user,
            paragraphs=[f"This is a friendly reminder that <strong>{escape(course.display_name)}</strong> starts soon."],
            details=details,
            accent="#10b981",
        )
        return self._send(user.email, subject, text, html)

    def send_preparation_reminder(self, user: Recipient, course: CourseSummary) -> bool:
        subject, text = build_fallback_email(EmailType.PREPARATION, user, course)
        html = self._render_html(
            heading="Get ready for your course",
            user=user,
            paragraphs=[
                f"<strong>{escape(course.display_name)}</strong> is coming up.",
                "Please review the pre-course materials in your dashboard and bring any required items.",
            ],
            details=[("Starts", self._format_start(course))],
            accent="#f59e0b",
        )
        return self._send(user.email, subject, text, html)

    def send_tech_check_reminder(self, user: Recipient, course: CourseSummary) -> bool:
        subject, text = build_fallback_email(EmailType.TECH_CHECK, user, course)
        tech_check = to_local(course.tech_check_date)
        details = [("Course starts", self._format_start(course))]
        if tech_check:
            details.append(("Tech check", tech_check.strftime("%A %d %B %Y at %H:%M")))
        if course.platform:
            details.append(("Platform", course.platform))
        html = self._render_html(
            heading="🖥️ Tech Check Reminder",
            user=user,
            paragraphs=["Please test your camera, microphone and internet connection before the session."],
            details=details,
            accent="#6366f1",
        )
        return self._send(user.email, subject, text, html)

    def send_custom_course_message(self, user: Recipient, course: CourseSummary, custom_message: str) -> bool:
        subject, text = build_fallback_email(EmailType.CUSTOM, user, course, custom_message)
        html = self._render_html(
            heading=f"Update: {escape(course.display_name)}",
            user=user,
            paragraphs=[escape(custom_message).replace("\n", "<br>")],
            details=[("Course starts", self._format_start(course))],
            accent="#3b82f6",
        )
        return self._send(user.email, subject, text, html)

    def send_plain_email(self, to_email: str, subject: str, body: str) -> bool:
        return self._send(to_email, subject, body)

    # --- Helpers ---

    @staticmethod
    def _format_start(course: CourseSummary) -> str:
        start = to_local(parse_datetime(course.start_date))
        return start.strftime("%A %d %B %Y at %H:%M") if start else "To be confirmed"

    def _render_html(self, heading: str, user: Recipient, paragraphs, details, accent: str) -> str:
        body = "".join(f"<p>{p}</p>" for p in paragraphs)
        rows = "".join(f"<p><strong>{escape(label)}:</strong> {escape(value)}</p>" for label, value in details)
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <meta charset="utf-8">
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background-color: {accent}; color: white; padding: 20px; text-align: center; }}
                .content {{ padding: 30px; background-color: #f9f9f9; }}
                .details {{ background: white; padding: 15px; border-left: 4px solid {accent}; }}
                .footer {{ padding: 20px; text-align: center; color: #666; font-size: 12px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header"><h1>{heading}</h1></div>
                <div class="content">
                    <p>Hello {escape(user.name or "there")},</p>
                    {body}
                    <div class="details">{rows}</div>
                    <p><a href="{self.frontend_url}/my-courses">View my courses</a></p>
                </div>
                <div class="footer"><p>You are receiving this email because you are enrolled in this course.</p></div>
            </div>
        </body>
        </html>
        """

    def _send(self, to_email: str, subject: str, text: str, html: Optional[str] = None) -> bool:
        if self.mock_mode:
            logger.info(f"📧 [Email] [MOCK] Would send '{subject}' to {to_email}")
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_email
        msg["To"] = to_email
        msg.attach(MIMEText(text, "plain"))
        if html:
            msg.attach(MIMEText(html, "html"))

        try:
            context = ssl.create_default_context()
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_server, self.smtp_port, timeout=self.timeout, context=context) as server:
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
            else:
                # STARTTLS for port 587
                with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    server.login(self.smtp_username, self.smtp_password)
                    server.send_message(msg)
            logger.info(f"✅ [Email] Email sent successfully to {to_email}")
            return True
        except smtplib.SMTPException as e:
            logger.error(f"❌ [Email] SMTP error sending to {to_email}: {e}")
            return False
        except OSError as e:
            logger.error(f"❌ [Email] Failed to send email to {to_email}: {e}")
            return False
