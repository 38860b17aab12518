"""
Inbound email handling: Figma notification parsing, classification,
the Resend client and forwarding of auxiliary emails.
"""

from .parser import ParsedEmail, parse_email, find_comment_by_text, extract_file_key_from_url
from .classifier import EmailMessageType, EmailClassification, classify_figma_email, should_forward_email
from .resend import ResendClient, transform_to_mailgun_format
from .forwarding import EmailForwarder, ForwardResult

__all__ = [
    'ParsedEmail',
    'parse_email',
    'find_comment_by_text',
    'extract_file_key_from_url',
    'EmailMessageType',
    'EmailClassification',
    'classify_figma_email',
    'should_forward_email',
    'ResendClient',
    'transform_to_mailgun_format',
    'EmailForwarder',
    'ForwardResult',
]
