"""
Notification templates.

Placeholders use {{name}} and are filled by render(). The HTML template can
be overridden with a file (TRACKER_EMAIL_TEMPLATE) using the same
placeholders: location, count, booking_url, timestamp.
"""

import html
import logging
import re
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TEXT_TEMPLATE = "{{booking_url}} - {{count}} REAL ID appointment(s) available at {{location}}! (detected {{timestamp}})"

HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>REAL ID Appointment Available</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
  <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background-color: #1a73e8; color: white; padding: 20px; text-align: center;">
      <h1>REAL ID Appointment Available!</h1>
    </div>
    <div style="padding: 20px; background-color: #f9f9f9;">
      <p>Good news! REAL ID appointments are now available at the following location:</p>
      <div style="background-color: white; border-left: 4px solid #1a73e8; padding: 15px; margin: 20px 0;">
        <p><strong>Location Type:</strong> {{location}}</p>
        <p><strong>Available Appointments:</strong>
          <span style="font-size: 24px; font-weight: bold; color: #1a73e8;">{{count}}</span></p>
        <p><strong>Detected At:</strong> {{timestamp}}</p>
      </div>
      <p>Don't wait! These appointments may be claimed quickly.</p>
      <a href="{{booking_url}}" style="display: inline-block; background-color: #1a73e8; color: white;
         text-decoration: none; padding: 12px 24px; border-radius: 4px; font-weight: bold;">Book Your Appointment Now</a>
      <p style="margin-top: 30px; font-size: 14px;">
        <em>This is an automated notification from your REAL ID Appointment Tracker.</em>
      </p>
    </div>
  </div>
</body>
</html>"""

TEST_SUBJECT = "REAL ID Tracker - Test Notification"

TEST_TEXT = (
    "This is a test notification from your REAL ID Appointment Tracker. "
    "If you're receiving this, your notification system is working correctly. "
    "Sent at: {{timestamp}}"
)

TEST_HTML = """<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #1a73e8;">REAL ID Tracker Test Notification</h2>
  <p>This is a test notification from your REAL ID Appointment Tracker.</p>
  <p style="background-color: #e8f0fe; padding: 10px; border-left: 4px solid #1a73e8;">
    If you're receiving this, your notification system is working correctly.
  </p>
  <p style="font-size: 12px; color: #777; margin-top: 30px;">Sent at: {{timestamp}}</p>
</div>"""

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render(template: str, escape: bool = False, **values) -> str:
    """Replace {{name}} placeholders; unknown names are left as-is."""

    def _sub(match: re.Match) -> str:
        name = match.group(1)
        if name not in values:
            return match.group(0)
        value = str(values[name])
        return html.escape(value, quote=True) if escape else value

    return _PLACEHOLDER.sub(_sub, template)


def load_html_template(path: Optional[Path]) -> str:
    """Read a custom HTML template, falling back to the built-in one."""
    if path is None:
        return HTML_TEMPLATE
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        logger.error(f"Error reading email template {path}: {e}. Using built-in template")
        return HTML_TEMPLATE
