"""HTML email templates for application lifecycle notifications."""

import enum
from typing import Any, Dict, Tuple

from jinja2 import DictLoader, Environment, StrictUndefined

from studieo.config import settings


class NotificationTemplate(str, enum.Enum):
    TEAM_INVITE = "team-invite"
    APPLICATION_SUBMITTED = "application-submitted"
    APPLICATION_NEW = "application-new"
    APPLICATION_ACCEPTED = "application-accepted"
    APPLICATION_REJECTED = "application-rejected"
    APPLICATION_DISBANDED = "application-disbanded"
    TEAM_MEMBER_CONFIRMED = "team-member-confirmed"
    APPLICATION_WITHDRAWN = "application-withdrawn"


BASE_HTML = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body { font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background-color: #f5f5f5; color: #525252; margin: 0; padding: 0; }
        .container { max-width: 600px; margin: 40px auto; background: #ffffff; border-radius: 8px; overflow: hidden; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }
        .header { padding: 32px 40px 0; text-align: center; }
        .header h1 { color: #000; margin: 0; font-size: 28px; }
        .content { padding: 32px 40px; line-height: 1.5; }
        .content h2 { color: #000; font-size: 24px; margin: 0 0 16px 0; }
        .content p { margin: 0 0 16px 0; }
        .box { background: #f5f5f5; border-left: 4px solid #000; padding: 16px; margin: 24px 0; }
        .box.success { background: #f0fdf4; border-color: #16a34a; }
        .box.danger { background: #fef2f2; border-color: #ef4444; }
        .box.warning { background: #fef3c7; border-color: #f59e0b; }
        .label { color: #737373; font-size: 12px; text-transform: uppercase; margin: 0 0 4px 0; }
        .title { color: #000; font-size: 18px; font-weight: 600; margin: 0; }
        .button-wrap { margin: 24px 0; }
        .btn { display: inline-block; background: #000; color: #ffffff; text-decoration: none; padding: 12px 24px; border-radius: 6px; font-weight: 600; }
        .btn.secondary { background: #ffffff; color: #000; border: 1px solid #e5e5e5; }
        .note { color: #737373; font-size: 14px; }
        .footer { border-top: 1px solid #e5e5e5; padding: 24px; text-align: center; color: #a3a3a3; font-size: 12px; }
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>Studieo</h1></div>
        <div class="content">
            {% block body %}{% endblock %}
        </div>
        <div class="footer">
            <p>You received this email because you're part of the Studieo platform.</p>
        </div>
    </div>
</body>
</html>
"""

TEMPLATES = {
    "base.html": BASE_HTML,
    "team-invite.html": """{% extends "base.html" %}{% block body %}
<h2>You've been invited to join a team!</h2>
<p>Hi {{ to_name }},</p>
<p><strong>{{ inviter_name }}</strong> has invited you to join their team for the project:</p>
<div class="box"><p class="title">{{ project_title }}</p></div>
<p>View the application details and decide whether you'd like to join the team.</p>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/applications/{{ application_id }}">View Application</a></div>
<p class="note"><strong>Note:</strong> The team lead may submit the application before you confirm. You'll be able to confirm your participation after submission.</p>
{% endblock %}""",
    "application-submitted.html": """{% extends "base.html" %}{% block body %}
<h2>{{ "Application Submitted!" if is_lead else "Team Application Submitted" }}</h2>
<p>Hi {{ to_name }},</p>
<p>{% if is_lead %}Your application has been successfully submitted!{% else %}{{ team_lead_name }} has submitted the team application.{% endif %}</p>
<div class="box">
    <p class="label">Project</p><p class="title">{{ project_title }}</p>
    <p class="label">Company</p><p>{{ company_name }}</p>
</div>
{% if needs_confirmation %}
<div class="box warning">
    <p class="title">Action Required</p>
    <p>Please confirm your participation in this application. If you don't want to participate, you can decline and the application will be disbanded.</p>
</div>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/applications/{{ application_id }}">Confirm Participation</a></div>
{% else %}
<div class="button-wrap"><a class="btn secondary" href="{{ base_url }}/applications/{{ application_id }}">View Application</a></div>
{% endif %}
<p class="note">The company will review your application and you'll be notified of their decision.</p>
{% endblock %}""",
    "application-new.html": """{% extends "base.html" %}{% block body %}
<h2>New Application Received</h2>
<p>Hi {{ company_name }} team,</p>
<p>A new team has applied to your project!</p>
<div class="box">
    <p class="label">Project</p><p class="title">{{ project_title }}</p>
    <p class="label">Team Lead</p><p>{{ team_lead_name }}</p>
    <p class="label">Team Size</p><p>{{ team_size }} {{ "student" if team_size == 1 else "students" }}</p>
</div>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/projects/{{ project_id }}">Review Application</a></div>
{% endblock %}""",
    "application-accepted.html": """{% extends "base.html" %}{% block body %}
<h2>Congratulations! Your application was accepted!</h2>
<p>Hi {{ to_name }},</p>
<p>Great news! <strong>{{ company_name }}</strong> has accepted your team's application for:</p>
<div class="box success"><p class="title">{{ project_title }}</p></div>
<p>Please reach out to your company contact to coordinate the project kickoff:</p>
<div class="box">
    <p class="label">Contact Person</p>
    <p class="title">{{ contact_name }}</p>
    <p>{{ contact_role }}</p>
    <p><a href="mailto:{{ contact_email }}">{{ contact_email }}</a></p>
</div>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/applications/{{ application_id }}">View Project Details</a></div>
{% endblock %}""",
    "application-rejected.html": """{% extends "base.html" %}{% block body %}
<h2>Application Update</h2>
<p>Hi {{ to_name }},</p>
<p>Thank you for applying to <strong>{{ project_title }}</strong> at {{ company_name }}.</p>
<p>Unfortunately, your team's application was not selected for this project.</p>
<div class="box"><p>There are many other exciting projects on Studieo waiting for talented students like you.</p></div>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/student/search">Browse More Projects</a></div>
{% endblock %}""",
    "application-disbanded.html": """{% extends "base.html" %}{% block body %}
<h2>Application Disbanded</h2>
<p>Hi {{ to_name }},</p>
{% if is_declined_by %}
<p>You have declined participation in the application for <strong>{{ project_title }}</strong>. The application has been disbanded.</p>
<div class="box danger"><p>When a team member declines, the entire application is cancelled. Your former teammates have been notified.</p></div>
{% else %}
<p><strong>{{ declined_by_name }}</strong> has declined participation in your team application for <strong>{{ project_title }}</strong>. The application has been disbanded.</p>
<div class="box danger"><p>When a team member declines, the entire application is cancelled. You can start a new application with a different team.</p></div>
{% endif %}
<div class="button-wrap"><a class="btn" href="{{ base_url }}/student/search">Browse Projects</a></div>
{% endblock %}""",
    "team-member-confirmed.html": """{% extends "base.html" %}{% block body %}
<h2>Team Member Confirmed</h2>
<p>Hi {{ team_lead_name }},</p>
<p><strong>{{ member_name }}</strong> has confirmed their participation in your application for:</p>
<div class="box success"><p class="title">{{ project_title }}</p></div>
<div class="button-wrap"><a class="btn secondary" href="{{ base_url }}/applications/{{ application_id }}">View Application</a></div>
<p class="note">Your team is one step closer to being ready! You'll be notified when all members have confirmed.</p>
{% endblock %}""",
    "application-withdrawn.html": """{% extends "base.html" %}{% block body %}
<h2>Application Withdrawn</h2>
<p>Hi {{ to_name }},</p>
<p><strong>{{ team_lead_name }}</strong> has withdrawn the application for:</p>
<div class="box danger"><p class="title">{{ project_title }}</p></div>
<p>The application has been cancelled and removed from the system. You can continue browsing other projects or join a different team.</p>
<div class="button-wrap"><a class="btn" href="{{ base_url }}/student/search">Browse Projects</a></div>
{% endblock %}""",
}

SUBJECTS = {
    NotificationTemplate.TEAM_INVITE: "You've been invited to join a team for {project_title}",
    NotificationTemplate.APPLICATION_SUBMITTED: "Application submitted: {project_title}",
    NotificationTemplate.APPLICATION_NEW: "New application for {project_title}",
    NotificationTemplate.APPLICATION_ACCEPTED: "Accepted: {project_title}",
    NotificationTemplate.APPLICATION_REJECTED: "Application update: {project_title}",
    NotificationTemplate.APPLICATION_DISBANDED: "Application disbanded: {project_title}",
    NotificationTemplate.TEAM_MEMBER_CONFIRMED: "Team member confirmed for {project_title}",
    NotificationTemplate.APPLICATION_WITHDRAWN: "Application withdrawn: {project_title}",
}

_env = Environment(
    loader=DictLoader(TEMPLATES),
    autoescape=True,
    undefined=StrictUndefined,
)


def render(template: NotificationTemplate, params: Dict[str, Any]) -> Tuple[str, str]:
    """Return ``(subject, html)`` for a template. Missing params raise."""
    template = NotificationTemplate(template)
    context = {"base_url": settings.BASE_URL.rstrip("/"), **params}
    html = _env.get_template(f"{template.value}.html").render(context)
    subject = SUBJECTS[template].format(**params)
    return subject, html
