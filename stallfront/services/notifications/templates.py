"""
Notification Templates

Jinja2 templates for every transactional email and SMS. Each template
renders a subject line and an HTML body from the same context.
"""

from dataclasses import dataclass

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

_LAYOUT = """\
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <h1 style="color: #e8590c;">{% block heading %}{% endblock %}</h1>
  {% block body %}{% endblock %}
  <p style="color: #666; font-size: 12px;">{{ app_name }}</p>
</div>
"""

_TEMPLATES = {
    "layout.html": _LAYOUT,

    "signup.subject": "Finish setting up your {{ app_name }} account",
    "signup.html": """{% extends "layout.html" %}
{% block heading %}Welcome, {{ name }}!{% endblock %}
{% block body %}
<p>Click the link below to choose a password. It expires in {{ hours }} hours.</p>
<p><a href="{{ link }}">{{ link }}</a></p>
{% endblock %}""",

    "invite.subject": "You have been invited to {{ business_name }} on {{ app_name }}",
    "invite.html": """{% extends "layout.html" %}
{% block heading %}You're invited{% endblock %}
{% block body %}
<p>Hi {{ name }}, {{ business_name }} added you as {{ roles | join(", ") }}.</p>
<p><a href="{{ link }}">Accept the invitation</a> (valid for {{ hours }} hours).</p>
{% endblock %}""",

    "password_reset.subject": "Reset your {{ app_name }} password",
    "password_reset.html": """{% extends "layout.html" %}
{% block heading %}Password reset{% endblock %}
{% block body %}
<p>Use the link below to choose a new password. If you did not ask for this, ignore this email.</p>
<p><a href="{{ link }}">{{ link }}</a></p>
{% endblock %}""",

    "login_link.subject": "Your {{ app_name }} sign-in link",
    "login_link.html": """{% extends "layout.html" %}
{% block heading %}Sign in{% endblock %}
{% block body %}
<p><a href="{{ link }}">Sign in to {{ app_name }}</a>. The link works once.</p>
{% endblock %}""",

    "otp.subject": "Your {{ app_name }} verification code",
    "otp.html": """{% extends "layout.html" %}
{% block heading %}Verification code{% endblock %}
{% block body %}
<p style="font-size: 28px; letter-spacing: 6px;"><strong>{{ code }}</strong></p>
<p>The code expires in {{ minutes }} minutes.</p>
{% endblock %}""",

    "order_confirmation.subject": "Order #{{ reference }} received - {{ stall_name }}",
    "order_confirmation.html": """{% extends "layout.html" %}
{% block heading %}Thanks for your order!{% endblock %}
{% block body %}
<p>Hi {{ name }}, {{ stall_name }} has your order <strong>#{{ reference }}</strong>.</p>
<ul>
{% for item in items %}  <li>{{ item.qty }} x {{ item.title }} - {{ item.total }}</li>
{% endfor %}</ul>
<p>{% if delivery_option == "delivery" %}Delivery to {{ delivery_address }}{% else %}Pickup{% endif %} at {{ scheduled_for }}</p>
<p>Total: <strong>{{ total }}</strong></p>
{% endblock %}""",

    "order_status.subject": "Order #{{ reference }} is {{ status }}",
    "order_status.html": """{% extends "layout.html" %}
{% block heading %}Order update{% endblock %}
{% block body %}
<p>Hi {{ name }}, your order <strong>#{{ reference }}</strong> from {{ stall_name }} is now <strong>{{ status }}</strong>.</p>
{% if notes %}<p>{{ notes }}</p>{% endif %}
{% endblock %}""",

    "order_cancelled.subject": "Order #{{ reference }} cancelled",
    "order_cancelled.html": """{% extends "layout.html" %}
{% block heading %}Order cancelled{% endblock %}
{% block body %}
<p>Hi {{ name }}, order <strong>#{{ reference }}</strong> from {{ stall_name }} was cancelled.</p>
{% if reason %}<p>Reason: {{ reason }}</p>{% endif %}
{% if refunded %}<p>Your payment of {{ total }} will be refunded.</p>{% endif %}
{% endblock %}""",

    "order_ready.sms": "{{ stall_name }}: order #{{ reference }} is ready{% if delivery_option == 'pickup' %} for pickup{% endif %}.",
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    trim_blocks=True,
)


@dataclass
class RenderedEmail:
    subject: str
    html: str


def render_email(template: str, **context) -> RenderedEmail:
    """Render ``<template>.subject`` and ``<template>.html`` with the same context."""
    subject = _env.get_template(f"{template}.subject").render(**context).strip()
    html = _env.get_template(f"{template}.html").render(**context)
    return RenderedEmail(subject=subject, html=html)


def render_sms(template: str, **context) -> str:
    return _env.get_template(f"{template}.sms").render(**context).strip()


def format_money(cents: int, currency: str) -> str:
    return f"{currency} {cents / 100:,.2f}"
