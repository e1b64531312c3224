"""Emergency Detection & Notification Dispatch Service

This service turns live call transcripts into field-service dispatches:
- Detects the caller's language (English or Spanish)
- Scores the urgency of the reported issue
- Runs technician and customer notification workflows
- Tracks delivery outcomes per language and template
"""

__version__ = "1.0.0"
