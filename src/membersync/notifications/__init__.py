"""Email notifications."""

from membersync.notifications.mailer import Mailer, load_template, portal_context, render_portal_message

__all__ = ["Mailer", "load_template", "portal_context", "render_portal_message"]
