"""
Discubot: discussion intake and task routing service.

Webhook receivers normalize Figma comment emails, Slack mentions and
Notion comments into a canonical discussion, run it through AI task
extraction and create the resulting tasks in Notion.
"""

__version__ = "1.0.0"
