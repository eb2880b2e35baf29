"""
Email notifications for introduction, claim and interview events.

Receivers are connected to the signals in ``events``; a failed send is
logged and never undoes the transition that triggered it.
"""
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app

import events
from models import CandidateResponse
from utils import validate_email

logger = logging.getLogger(__name__)


def admin_recipients():
    return [address.strip() for address in current_app.config.get('ADMIN_EMAILS', '').split(',') if address.strip()]


def send_email(recipients, subject, html_content):
    """Send an HTML email; returns True when handed to the SMTP server"""
    addresses = []
    for recipient in recipients or []:
        if validate_email(recipient):
            addresses.append(recipient)
        elif recipient:
            logger.warning("Skipping invalid address %r for email '%s'", recipient, subject)
    recipients = addresses
    if not recipients:
        logger.warning("No recipients for email '%s'", subject)
        return False

    config = current_app.config
    if not config.get('SMTP_ENABLED'):
        logger.info("SMTP disabled, not sending '%s' to %s", subject, ', '.join(recipients))
        return False

    smtp_user = config.get('SMTP_USER', '')
    if not smtp_user:
        logger.warning("SMTP credentials not configured, cannot send '%s'", subject)
        return False

    msg = MIMEMultipart()
    msg['From'] = config.get('MAIL_FROM') or smtp_user
    msg['To'] = ', '.join(recipients)
    msg['Subject'] = subject
    msg.attach(MIMEText(html_content, 'html'))

    try:
        with smtplib.SMTP(config.get('SMTP_SERVER', 'smtp.gmail.com'), int(config.get('SMTP_PORT', 587))) as server:
            server.starttls()
            server.login(smtp_user, config.get('SMTP_PASSWORD', ''))
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Error sending email '%s' to %s: %s", subject, ', '.join(recipients), e)
        return False

    logger.info("Sent '%s' to %d recipients", subject, len(recipients))
    return True


def response_link(token):
    base_url = current_app.config.get('APP_BASE_URL', '').rstrip('/')
    return f"{base_url}/introductions/respond/{token.token}"


# ---------- introductions ----------

def on_introduction_requested(introduction, token=None, **kwargs):
    employer = introduction.employer
    job_line = f" for the <strong>{introduction.job.title}</strong> role" if introduction.job else ""
    send_email(
        [introduction.candidate.email],
        f"{employer.company_name} would like to be introduced to you",
        f"""
        <html><body style="font-family: Arial, sans-serif;">
            <p>Hi {introduction.candidate.name},</p>
            <p><strong>{employer.company_name}</strong> reviewed your profile and would like an
            introduction{job_line}.</p>
            <p><a href="{response_link(token)}">Accept, decline or ask a question</a></p>
            <p>This link expires on {token.expires_at.strftime('%B %d, %Y')}.</p>
        </body></html>
        """,
    )


def on_candidate_responded(introduction, response=None, **kwargs):
    candidate = introduction.candidate
    employer = introduction.employer

    if response == CandidateResponse.QUESTIONS:
        send_email(
            admin_recipients(),
            f"Candidate has questions about introduction #{introduction.id}",
            f"""
            <html><body style="font-family: Arial, sans-serif;">
                <p>{candidate.name} has questions about the introduction to {employer.company_name}:</p>
                <blockquote>{introduction.candidate_message or ''}</blockquote>
            </body></html>
            """,
        )
        return

    if response == CandidateResponse.ACCEPTED:
        subject = f"{candidate.name} accepted your introduction request"
        body = f"""
            <p>{candidate.name} would like to talk.</p>
            <p>Email: {candidate.email}<br>Phone: {candidate.phone or 'not provided'}</p>
            <p>Your protection period runs until {introduction.protection_ends_at.strftime('%B %d, %Y')}.</p>
        """
    else:
        subject = f"{candidate.name} declined your introduction request"
        body = f"<p>{candidate.name} is not interested in this opportunity right now.</p>"

    send_email(
        [employer.contact_email or employer.user.email],
        subject,
        f'<html><body style="font-family: Arial, sans-serif;">{body}</body></html>',
    )


# ---------- claims ----------

def on_job_claimed(claimed_job, **kwargs):
    employer = claimed_job.employer
    send_email(
        [employer.contact_email or employer.user.email],
        f"You have claimed {claimed_job.job.title}",
        f"""
        <html><body style="font-family: Arial, sans-serif;">
            <p>{employer.company_name} now manages <strong>{claimed_job.job.title}</strong>.</p>
            <p>We will start sending you up to {claimed_job.candidates_needed} verified candidates.</p>
        </body></html>
        """,
    )


# ---------- interviews ----------

def _interview_email(recipient, subject, lines):
    paragraphs = ''.join(f'<p>{line}</p>' for line in lines)
    send_email([recipient], subject, f'<html><body style="font-family: Arial, sans-serif;">{paragraphs}</body></html>')


def on_interview_slots_proposed(proposal, **kwargs):
    _interview_email(
        proposal.candidate.email,
        f"{proposal.employer.company_name} proposed interview times",
        [f"{len(proposal.slots)} time slots are waiting for you. Pick every time that works."],
    )


def on_interview_slots_selected(proposal, **kwargs):
    employer = proposal.employer
    _interview_email(
        employer.contact_email or employer.user.email,
        f"{proposal.candidate.name} picked interview times",
        [f"{len(proposal.selected_slots)} of your proposed times work. Confirm one to schedule the interview."],
    )


def on_interview_scheduled(proposal, **kwargs):
    slot = proposal.confirmed_slot
    _interview_email(
        proposal.candidate.email,
        f"Interview with {proposal.employer.company_name} confirmed",
        [f"Your interview is scheduled for {slot.start_time.strftime('%A, %B %d at %H:%M')} UTC.",
         f"Platform: {proposal.meeting_platform or 'to be shared'}"],
    )


def on_interview_cancelled(proposal, reason=None, **kwargs):
    employer = proposal.employer
    for recipient in (proposal.candidate.email, employer.contact_email or employer.user.email):
        _interview_email(recipient, "Interview cancelled",
                         [f"The interview between {employer.company_name} and {proposal.candidate.name} was cancelled.",
                          f"Reason: {reason or 'not given'}"])


def on_interview_rescheduled(proposal, reason=None, **kwargs):
    _interview_email(
        proposal.candidate.email,
        f"{proposal.employer.company_name} is rescheduling your interview",
        ["The earlier times are withdrawn. New times will follow shortly.",
         f"Reason: {reason or 'not given'}"],
    )


def on_interview_reschedule_requested(proposal, reason=None, **kwargs):
    employer = proposal.employer
    _interview_email(
        employer.contact_email or employer.user.email,
        f"{proposal.candidate.name} asked to reschedule",
        [f"Reason: {reason}", "Reschedule the interview to propose new times."],
    )


def register_notifications(app):
    """Connect the email receivers to the event signals"""
    events.introduction_requested.connect(on_introduction_requested)
    events.candidate_responded.connect(on_candidate_responded)
    events.job_claimed.connect(on_job_claimed)
    events.interview_slots_proposed.connect(on_interview_slots_proposed)
    events.interview_slots_selected.connect(on_interview_slots_selected)
    events.interview_scheduled.connect(on_interview_scheduled)
    events.interview_cancelled.connect(on_interview_cancelled)
    events.interview_rescheduled.connect(on_interview_rescheduled)
    events.interview_reschedule_requested.connect(on_interview_reschedule_requested)
    app.logger.debug("Email notifications registered")
