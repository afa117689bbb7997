"""
Email templates and SMTP delivery for Car With Driver
"""

import os
import re
import smtplib
import logging
from html import escape
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from email.utils import formatdate, make_msgid
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

BRAND_NAME = os.environ.get('BRAND_NAME', 'Car With Driver')


def _format_day(value) -> str:
    if not value:
        return ""
    return str(value)[:10]


# Base template wrapper
def get_base_template(content: str) -> str:
    return f"""
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <meta charset="utf-8">
        <meta name="viewport" content="width=device-width, initial-scale=1.0">
        <title>{BRAND_NAME}</title>
    </head>
    <body style="margin: 0; padding: 0; font-family: Arial, Helvetica, sans-serif; background-color: #f4f6f5;">
        <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="100%" style="background-color: #f4f6f5;">
            <tr>
                <td align="center" style="padding: 20px 10px;">
                    <table role="presentation" cellspacing="0" cellpadding="0" border="0" width="600" style="background-color: #ffffff; border-radius: 8px;">
                        <tr>
                            <td style="background-color: #0f5132; padding: 24px; text-align: center;">
                                <h1 style="color: #ffffff; margin: 0; font-size: 22px;">{BRAND_NAME}</h1>
                                <p style="color: #cfe8dc; margin: 6px 0 0 0; font-size: 13px;">Private drivers across Sri Lanka</p>
                            </td>
                        </tr>
                        <tr>
                            <td style="padding: 28px;">
                                {content}
                            </td>
                        </tr>
                        <tr>
                            <td style="background-color: #f0f0f0; padding: 18px; text-align: center;">
                                <p style="color: #777777; margin: 0; font-size: 11px;">
                                    This email was sent automatically by {BRAND_NAME}.<br>
                                    If you did not expect it, you can ignore it.
                                </p>
                            </td>
                        </tr>
                    </table>
                </td>
            </tr>
        </table>
    </body>
    </html>
    """


def _button(url: str, label: str) -> str:
    return f"""
        <p style="text-align: center; margin: 28px 0;">
            <a href="{escape(url)}" style="background-color: #0f5132; color: #ffffff; padding: 12px 28px; border-radius: 6px; text-decoration: none; font-weight: bold;">{label}</a>
        </p>
    """


def _detail_rows(rows) -> str:
    cells = "".join(
        f'<tr><td style="padding: 6px 0; color: #666666; width: 40%;">{label}</td>'
        f'<td style="padding: 6px 0; color: #222222;">{escape(str(value))}</td></tr>'
        for label, value in rows if value not in (None, "")
    )
    return f'<table role="presentation" width="100%" style="margin: 16px 0; font-size: 14px;">{cells}</table>'


# ==================== ACCOUNT TEMPLATES ====================

def get_verification_template(name: str, verification_url: str) -> str:
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Confirm your email</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            Thanks for joining {BRAND_NAME}. Confirm your email address to start using your account.
            The link expires in 24 hours.
        </p>
        {_button(verification_url, 'Verify email')}
    """
    return get_base_template(content)


def get_password_reset_template(name: str, reset_url: str, expires_in_minutes: int = 60) -> str:
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Reset your password</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            We received a request to reset your password. The link below is valid for {expires_in_minutes} minutes.
            If you did not ask for this, no action is needed.
        </p>
        {_button(reset_url, 'Choose a new password')}
    """
    return get_base_template(content)


def get_password_changed_template(name: str) -> str:
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Password updated</h2>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            Hi {escape(name or 'there')}, your {BRAND_NAME} password was just changed.
            If this was not you, reset your password straight away.
        </p>
    """
    return get_base_template(content)


def get_driver_status_template(name: str, status: str, note: str = None) -> str:
    label = status.capitalize()
    note_html = f'<p style="color: #555555; font-size: 15px;"><strong>Note:</strong> {escape(note)}</p>' if note else ""
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Driver application {label.lower()}</h2>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            Hi {escape(name or 'there')}, your driver application is now <strong>{label}</strong>.
        </p>
        {note_html}
    """
    return get_base_template(content)


def get_vehicle_status_template(name: str, vehicle_model: str, status: str, note: str = None) -> str:
    label = status.capitalize()
    note_html = f'<p style="color: #555555; font-size: 15px;"><strong>Reason:</strong> {escape(note)}</p>' if note else ""
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">{escape(vehicle_model or 'Vehicle')} {label.lower()}</h2>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            Hi {escape(name or 'there')}, your vehicle listing is now <strong>{label}</strong>.
        </p>
        {note_html}
    """
    return get_base_template(content)


def get_admin_message_template(name: str, message: str, sender: str = None) -> str:
    body = escape(message).replace("\n", "<br>")
    content = f"""
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">{body}</p>
        <p style="color: #888888; font-size: 13px;">{escape(sender or BRAND_NAME + ' team')}</p>
    """
    return get_base_template(content)


# ==================== BOOKING TEMPLATES ====================

def _booking_rows(booking: dict, vehicle: dict) -> str:
    return _detail_rows([
        ("Vehicle", (vehicle or {}).get("model")),
        ("Start date", _format_day(booking.get("start_date"))),
        ("End date", _format_day(booking.get("end_date"))),
        ("Days", booking.get("total_days")),
        ("Total price", f"USD {(booking.get('total_price') or 0):.2f}"),
        ("Status", (booking.get("status") or "").capitalize()),
    ])


def get_booking_request_template(name: str, booking: dict, vehicle: dict) -> str:
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Booking request received</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            Your booking has been sent to the driver. We will let you know as soon as it is confirmed.
        </p>
        {_booking_rows(booking, vehicle)}
        <p style="color: #555555; font-size: 14px;">{escape(booking.get('payment_note') or '')}</p>
    """
    return get_base_template(content)


def get_booking_alert_template(driver_name: str, traveler: dict, booking: dict, vehicle: dict) -> str:
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">New booking request</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(driver_name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            {escape((traveler or {}).get('full_name') or 'A traveller')} has requested your vehicle.
            Open your dashboard to respond.
        </p>
        {_booking_rows(booking, vehicle)}
    """
    return get_base_template(content)


def get_booking_status_template(name: str, booking: dict, vehicle: dict, note: str = None) -> str:
    status = booking.get("status", "")
    note_html = f'<p style="color: #555555; font-size: 15px;">{escape(note)}</p>' if note else ""
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Booking {escape(status)}</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">Your booking has been updated.</p>
        {note_html}
        {_booking_rows(booking, vehicle)}
    """
    return get_base_template(content)


def get_conversation_notification_template(name: str, sender_name: str, preview: str, is_offer: bool) -> str:
    heading = "New offer received" if is_offer else "New message"
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">{heading}</h2>
        <p style="color: #333333; font-size: 15px;">Hi {escape(name or 'there')},</p>
        <p style="color: #555555; font-size: 15px; line-height: 1.6;">
            {escape(sender_name or 'Someone')} wrote:
        </p>
        <blockquote style="border-left: 3px solid #0f5132; margin: 12px 0; padding: 8px 14px; color: #333333;">
            {escape(preview).replace(chr(10), '<br>')}
        </blockquote>
        {_button(f"{os.environ.get('APP_URL', 'http://localhost:5173').rstrip('/')}/messages", 'Open conversation')}
    """
    return get_base_template(content)


def get_support_request_template(request: dict) -> str:
    message = escape(request.get("message") or "").replace("\n", "<br>")
    content = f"""
        <h2 style="color: #1a1a1a; margin: 0 0 16px 0;">Support request</h2>
        {_detail_rows([
            ("Name", request.get("name")),
            ("Email", request.get("email")),
            ("Category", request.get("category")),
            ("Booking", request.get("booking_id")),
        ])}
        <p style="color: #333333; font-size: 15px; line-height: 1.6;">{message}</p>
    """
    return get_base_template(content)


def strip_html_to_text(html: str) -> str:
    """Convert HTML to plain text for multipart emails"""
    text = re.sub(r'<style[^>]*>.*?</style>', '', html, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r'<br\s*/?>', '\n', text, flags=re.IGNORECASE)
    text = re.sub(r'</(p|div|tr|h2|blockquote)>', '\n', text, flags=re.IGNORECASE)
    text = re.sub(r'<[^>]+>', '', text)
    text = text.replace('&nbsp;', ' ').replace('&lt;', '<').replace('&gt;', '>')
    text = text.replace('&quot;', '"').replace('&#x27;', "'").replace('&amp;', '&')
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n\s*\n+', '\n\n', text)
    return text.strip()


def send_email(to_email: str, subject: str, html_content: str) -> bool:
    """Send an email using the SMTP configuration; failures are logged, never raised"""
    try:
        smtp_server = os.environ.get('SMTP_SERVER')
        smtp_port = int(os.environ.get('SMTP_PORT', 587))
        smtp_username = os.environ.get('SMTP_USERNAME')
        smtp_password = os.environ.get('SMTP_PASSWORD')
        smtp_from = os.environ.get('SMTP_FROM_EMAIL', smtp_username)
        reply_to = os.environ.get('SMTP_REPLY_TO', smtp_from)

        if not all([smtp_server, smtp_username, smtp_password]):
            logging.warning(f"SMTP not configured, cannot send email to {to_email}")
            return False

        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{BRAND_NAME} <{smtp_from}>"
        msg['To'] = to_email
        msg['Reply-To'] = reply_to
        msg['Message-ID'] = make_msgid()
        msg['Date'] = formatdate(localtime=True)

        msg.attach(MIMEText(strip_html_to_text(html_content), 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        with smtplib.SMTP(smtp_server, smtp_port, timeout=30) as server:
            server.starttls()
            server.login(smtp_username, smtp_password)
            server.sendmail(smtp_from, to_email, msg.as_string())

        logging.info(f"Email sent successfully to {to_email}: {subject}")
        return True

    except Exception as e:
        logging.error(f"Failed to send email to {to_email}: {str(e)}")
        return False


# ==================== CONVENIENCE FUNCTIONS ====================

def send_verification_email(email: str, name: str, verification_url: str) -> bool:
    if not email:
        return False
    html = get_verification_template(name, verification_url)
    return send_email(email, f"Verify your {BRAND_NAME} account", html)


def send_password_reset_email(email: str, name: str, reset_url: str) -> bool:
    if not email:
        return False
    html = get_password_reset_template(name, reset_url)
    return send_email(email, f"Reset your {BRAND_NAME} password", html)


def send_password_changed_email(email: str, name: str) -> bool:
    if not email:
        return False
    return send_email(email, f"{BRAND_NAME} password updated", get_password_changed_template(name))


def send_driver_status_email(driver: dict, status: str, note: str = None) -> bool:
    if not driver or not driver.get("email"):
        return False
    html = get_driver_status_template(driver.get("name"), status, note)
    return send_email(driver["email"], f"Driver application {status.lower()}", html)


def send_vehicle_status_email(driver: dict, vehicle: dict, status: str, note: str = None) -> bool:
    if not driver or not driver.get("email"):
        return False
    html = get_vehicle_status_template(driver.get("name"), vehicle.get("model"), status, note)
    return send_email(driver["email"], f"{vehicle.get('model') or 'Vehicle'} {status.lower()}", html)


def send_driver_admin_message_email(driver: dict, subject: str, message: str, sender: str = None) -> bool:
    if not driver or not driver.get("email"):
        return False
    html = get_admin_message_template(driver.get("name"), message, sender)
    return send_email(driver["email"], (subject or "").strip() or f"Message from {BRAND_NAME}", html)


def send_booking_request_email(booking: dict, vehicle: dict) -> bool:
    traveler = booking.get("traveler") or {}
    if not traveler.get("email"):
        return False
    html = get_booking_request_template(traveler.get("full_name"), booking, vehicle)
    return send_email(traveler["email"], f"We received your booking request for {vehicle.get('model') or 'a vehicle'}", html)


def send_booking_alert_email(driver: dict, booking: dict, vehicle: dict) -> bool:
    if not driver or not driver.get("email"):
        return False
    html = get_booking_alert_template(driver.get("name"), booking.get("traveler"), booking, vehicle)
    return send_email(driver["email"], f"New booking request for {vehicle.get('model') or 'your vehicle'}", html)


def send_booking_status_email(recipient: dict, booking: dict, vehicle: dict, note: str = None) -> bool:
    if not recipient or not recipient.get("email"):
        return False
    html = get_booking_status_template(recipient.get("name"), booking, vehicle, note)
    status_label = (booking.get("status") or "").capitalize()
    return send_email(recipient["email"], f"{(vehicle or {}).get('model') or 'Booking'} updated: {status_label}", html)


def send_conversation_notification_email(recipient: dict, sender_name: str, preview: str, is_offer: bool = False) -> bool:
    if not recipient or not recipient.get("email"):
        return False
    html = get_conversation_notification_template(recipient.get("name"), sender_name, preview, is_offer)
    subject = f"New offer from {sender_name}" if is_offer else f"New message from {sender_name}"
    return send_email(recipient["email"], subject, html)


def send_support_request_email(to_email: str, request: dict) -> bool:
    if not to_email:
        return False
    html = get_support_request_template(request)
    return send_email(to_email, f"[{request.get('category') or 'general'}] Support request from {request.get('name')}", html)
