"""TechFlow Contacts — contact form backend with a realtime dashboard.

Public contact-form intake, owner-scoped contact management, JWT/Google
auth, and WebSocket push of contact changes to open dashboards.
"""

__version__ = "0.1.0"
