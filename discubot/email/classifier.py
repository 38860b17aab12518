"""
Classification of emails arriving on a Figma mailbox alias.

Only ``comment`` emails become discussions; everything else is stored
in the inbox and, for account emails, forwarded to the input owner.
"""

from dataclasses import dataclass
from enum import Enum


class EmailMessageType(str, Enum):
    COMMENT = "comment"
    ACCOUNT_VERIFICATION = "account-verification"
    PASSWORD_RESET = "password-reset"
    INVITATION = "invitation"
    NOTIFICATION = "notification"
    OTHER = "other"


@dataclass
class EmailClassification:
    message_type: EmailMessageType
    confidence: float
    reason: str


VERIFICATION_PATTERNS = (
    "verify your", "verify email", "verify account", "confirm your email",
    "confirm your account", "activate your account", "email verification",
    "account verification",
)
PASSWORD_RESET_PATTERNS = (
    "reset your password", "password reset", "forgot your password",
    "forgot password", "reset password", "change your password", "password recovery",
)
COMMENT_PATTERNS = (
    "commented on", "left a comment", "new comment", "replied to",
    "mentioned you", "@mentioned", "comment in", "discussion in",
)
INVITATION_PATTERNS = (
    "invited you", "invitation to", "join the team", "join our team",
    "has invited you", "you're invited", "invited to view", "shared a file",
    "shared with you",
)
NOTIFICATION_PATTERNS = (
    "notification", "update", "reminder", "alert", "figma news", "announcement",
)


def _matches(patterns, *texts: str) -> bool:
    return any(p in text for p in patterns for text in texts)


def classify_figma_email(
    from_address: str,
    subject: str,
    html_body: str = "",
    text_body: str = "",
) -> EmailClassification:
    """Classify an email by sender, subject and body keywords.

    Rules are checked in priority order: verification, password reset,
    comment, invitation, notification.
    """
    subject_lower = (subject or "").lower()
    from_lower = (from_address or "").lower()
    content = ((html_body or "") + (text_body or "")).lower()

    if _matches(VERIFICATION_PATTERNS, subject_lower, content):
        return EmailClassification(
            EmailMessageType.ACCOUNT_VERIFICATION, 0.95,
            "Subject or content contains account verification keywords",
        )

    if _matches(PASSWORD_RESET_PATTERNS, subject_lower, content):
        return EmailClassification(
            EmailMessageType.PASSWORD_RESET, 0.95,
            "Subject or content contains password reset keywords",
        )

    from_comments = "comments-" in from_lower and "@email.figma.com" in from_lower
    if from_comments and _matches(COMMENT_PATTERNS, subject_lower, content):
        return EmailClassification(
            EmailMessageType.COMMENT, 0.9,
            "Email contains comment-related keywords or patterns",
        )

    if _matches(INVITATION_PATTERNS, subject_lower, content):
        return EmailClassification(
            EmailMessageType.INVITATION, 0.85,
            "Subject or content contains invitation keywords",
        )

    if "@figma.com" in from_lower and _matches(NOTIFICATION_PATTERNS, subject_lower):
        return EmailClassification(
            EmailMessageType.NOTIFICATION, 0.7, "General notification from Figma",
        )

    return EmailClassification(
        EmailMessageType.OTHER, 0.5, "Could not match any known email patterns",
    )


def should_forward_email(message_type: EmailMessageType) -> bool:
    """Account emails need a human, so they go to the input owner."""
    return message_type in (EmailMessageType.ACCOUNT_VERIFICATION, EmailMessageType.PASSWORD_RESET)
