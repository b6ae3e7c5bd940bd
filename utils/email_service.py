import logging

from django.conf import settings
from django.template.loader import render_to_string
from django.core.mail import EmailMultiAlternatives

logger = logging.getLogger(__name__)


def _send(subject, template, context, text_content, to_email):
    """Emails are best-effort: a failed send is logged, never raised."""
    if not to_email:
        return False
    try:
        html_content = render_to_string(template, context)
        msg = EmailMultiAlternatives(subject, text_content, settings.DEFAULT_FROM_EMAIL, [to_email])
        msg.attach_alternative(html_content, "text/html")
        msg.send()
    except Exception as e:
        logger.error(f"Failed to send '{subject}' to {to_email}: {e}")
        return False
    logger.info(f"Email '{subject}' sent to {to_email}")
    return True


def send_commission_preview_email(commission):
    customer = commission.customer
    artist = commission.artist
    artist_name = artist.full_name or artist.email
    subject = f"Your commission from {artist_name} is ready to preview"

    preview_url = f"{settings.FRONTEND_URL}/commission/{commission.id}/preview"
    text_content = (
        f"Hi {customer.full_name or customer.email},\n\n"
        f"{artist_name} has delivered your commission #{commission.id}.\n"
        f"Preview it and approve or request a revision here: {preview_url}\n\n"
        f"Revisions used: {commission.revision_count} of {commission.max_revisions}."
    )
    return _send(
        subject,
        "commission_preview.html",
        {
            "customer": customer,
            "artist_name": artist_name,
            "commission": commission,
            "preview_url": preview_url,
        },
        text_content,
        customer.email,
    )


def send_commission_cancelled_email(commission, recipient, refunded=False):
    subject = f"Commission #{commission.id} has been cancelled"
    text_content = (
        f"Hi {recipient.full_name or recipient.email},\n\n"
        f"Commission #{commission.id} was cancelled.\n"
        f"Reason: {commission.cancellation_reason or 'not given'}\n"
    )
    if refunded:
        text_content += "A full refund has been issued to the original payment method.\n"
    return _send(
        subject,
        "commission_cancelled.html",
        {
            "recipient": recipient,
            "commission": commission,
            "refunded": refunded,
        },
        text_content,
        recipient.email,
    )
