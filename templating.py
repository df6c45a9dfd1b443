"""Message templates with ``{{variable}}`` placeholders."""

import logging
import re
import sqlite3
import uuid
from typing import Optional

from bs4 import BeautifulSoup

import db
from errors import NotFoundError, ValidationError
from models import TEMPLATE_TYPES, Template

logger = logging.getLogger(__name__)

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")

CATEGORIES = {
    "email": ["New Listing", "Follow Up", "Price Update", "Viewing Confirmation", "Thank You", "General"],
    "property": ["Luxury", "Off-Plan", "Ready to Move", "Investment", "Rental", "General"],
    "whatsapp": ["Inquiry Response", "Viewing Reminder", "Price Quote", "Follow Up", "General"],
}

# Values used for previews when the caller supplies none.
SAMPLE_VALUES = {
    "client_name": "Ahmed Al Maktoum",
    "client_first_name": "Ahmed",
    "property_name": "Marina Heights Tower",
    "location": "Dubai Marina, Dubai",
    "bedrooms": "2",
    "bathrooms": "3",
    "size": "1,450",
    "price": "2,500,000",
    "property_type": "Apartment",
    "amenities": "Pool, Gym, 24/7 Security, Covered Parking",
    "agent_name": "John Smith",
    "agent_phone": "+971 50 123 4567",
    "agent_email": "john@galahome.ae",
    "company_name": "Gala Home Real Estate",
    "viewing_date": "Monday, December 18th",
    "viewing_time": "3:00 PM",
    "property_url": "https://propertyfinder.ae/listing/12345",
}

DEFAULT_TEMPLATES = [
    {
        "name": "New Listing Announcement",
        "type": "email",
        "category": "New Listing",
        "subject": "Exclusive New Property: {{property_name}} in {{location}}",
        "content": (
            "<p>Dear {{client_name}},</p>\n"
            "<p>We have a new property that matches what you are looking for.</p>\n"
            "<h2>{{property_name}}</h2>\n"
            "<p><strong>Location:</strong> {{location}}</p>\n"
            "<p><strong>Type:</strong> {{bedrooms}} BR {{property_type}}</p>\n"
            "<p><strong>Size:</strong> {{size}} sq.ft</p>\n"
            "<p><strong>Price:</strong> AED {{price}}</p>\n"
            '<p><a href="{{property_url}}">View Property</a></p>\n'
            "<p>{{agent_name}}<br>{{agent_phone}}<br>{{company_name}}</p>"
        ),
    },
    {
        "name": "Viewing Confirmation",
        "type": "email",
        "category": "Viewing Confirmation",
        "subject": "Viewing Confirmed: {{property_name}} on {{viewing_date}}",
        "content": (
            "<p>Dear {{client_name}},</p>\n"
            "<p>Your viewing of <strong>{{property_name}}</strong> in {{location}} is confirmed "
            "for {{viewing_date}} at {{viewing_time}}.</p>\n"
            "<p>{{agent_name}}<br>{{agent_phone}}<br>{{company_name}}</p>"
        ),
    },
    {
        "name": "Luxury Property Description",
        "type": "property",
        "category": "Luxury",
        "content": (
            "<h2>{{property_name}} - {{location}}</h2>\n"
            "<p>A stunning <strong>{{bedrooms}} bedroom {{property_type}}</strong> in {{location}}.</p>\n"
            "<ul>\n  <li>{{size}} sq.ft of living space</li>\n"
            "  <li>{{bedrooms}} Bedrooms | {{bathrooms}} Bathrooms</li>\n</ul>\n"
            "<p>{{amenities}}</p>\n"
            "<h3>Price: AED {{price}}</h3>\n"
            "<p>For viewings contact <strong>{{agent_name}}</strong> at {{agent_phone}}</p>"
        ),
    },
    {
        "name": "Inquiry Response",
        "type": "whatsapp",
        "category": "Inquiry Response",
        "content": (
            "Hi {{client_first_name}}!\n\n"
            "Thank you for your inquiry about *{{property_name}}* in {{location}}.\n\n"
            "• {{bedrooms}} BR {{property_type}}\n"
            "• {{size}} sq.ft\n"
            "• Price: AED {{price}}\n\n"
            "Would you like to arrange a viewing?\n\n"
            "{{agent_name}}\n{{company_name}}"
        ),
    },
    {
        "name": "Viewing Reminder",
        "type": "whatsapp",
        "category": "Viewing Reminder",
        "content": (
            "Hi {{client_first_name}}! Just a reminder of your viewing:\n\n"
            "*{{property_name}}*\n{{viewing_date}} at {{viewing_time}}\n\n"
            "See you there!\n{{agent_name}}"
        ),
    },
]


def extract_variables(content: str, subject: Optional[str] = None) -> list[str]:
    """Placeholder names in order of first appearance, content before subject."""
    seen = []
    for text in (content or "", subject or ""):
        for name in PLACEHOLDER.findall(text):
            if name not in seen:
                seen.append(name)
    return seen


def render(text: str, values: dict) -> str:
    """Substitute placeholders; ones without a value are left as they are."""
    def replace(match):
        name = match.group(1)
        if name in values and values[name] is not None:
            return str(values[name])
        return match.group(0)

    return PLACEHOLDER.sub(replace, text or "")


def render_text(content: str, values: dict) -> str:
    """Render and strip markup, for plain-text channels."""
    html = render(content, values)
    soup = BeautifulSoup(html, "lxml")
    lines = [line.strip() for line in soup.get_text("\n").splitlines()]
    return "\n".join(line for line in lines if line)


def _to_template(row: dict) -> Template:
    return Template(**{k: v for k, v in row.items() if k in Template.__dataclass_fields__})


def get_template(template_id: str, conn: Optional[sqlite3.Connection] = None) -> Template:
    row = db.get_template(template_id, conn=conn)
    if row is None:
        raise NotFoundError(f"Template {template_id} not found")
    return _to_template(row)


def list_templates(template_type: Optional[str] = None, category: Optional[str] = None,
                   conn: Optional[sqlite3.Connection] = None) -> list[Template]:
    return [_to_template(row) for row in db.get_templates(template_type, category, conn=conn)]


def save_template(name: str, template_type: str, content: str, category: str = "General",
                  subject: Optional[str] = None, template_id: Optional[str] = None,
                  conn: Optional[sqlite3.Connection] = None) -> Template:
    """Insert or update a template, recomputing its variable list."""
    if not name or not content:
        raise ValidationError("Please provide a name and content for the template")
    if template_type not in TEMPLATE_TYPES:
        raise ValidationError(f"Template type must be one of {', '.join(TEMPLATE_TYPES)}")

    now = db.now_iso()
    created_at = now
    if template_id:
        created_at = get_template(template_id, conn=conn).created_at
    if template_type != "email":
        subject = None

    template = Template(
        id=template_id or f"tmpl_{uuid.uuid4().hex[:12]}",
        name=name,
        type=template_type,
        category=category or "General",
        subject=subject,
        content=content,
        variables=extract_variables(content, subject),
        created_at=created_at,
        updated_at=now,
    )
    db.upsert_template(template.to_dict(), conn=conn)
    logger.info(f"Saved {template.type} template {template.name!r} ({len(template.variables)} variables)")
    return template


def delete_template(template_id: str, conn: Optional[sqlite3.Connection] = None) -> bool:
    return db.delete_template(template_id, conn=conn)


def render_template(template_id: str, values: Optional[dict] = None,
                    conn: Optional[sqlite3.Connection] = None) -> dict:
    template = get_template(template_id, conn=conn)
    merged = dict(SAMPLE_VALUES) if values is None else dict(values)
    return {
        "id": template.id,
        "subject": render(template.subject, merged) if template.subject else None,
        "content": render(template.content, merged),
        "text": render_text(template.content, merged),
        "missing": [v for v in template.variables if v not in merged],
    }


def seed_default_templates(conn: Optional[sqlite3.Connection] = None) -> int:
    """Store the default templates if none exist yet."""
    if db.get_templates(conn=conn):
        return 0
    for tmpl in DEFAULT_TEMPLATES:
        save_template(
            tmpl["name"], tmpl["type"], tmpl["content"],
            category=tmpl["category"], subject=tmpl.get("subject"), conn=conn,
        )
    return len(DEFAULT_TEMPLATES)
