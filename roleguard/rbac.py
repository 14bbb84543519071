"""Role, resource and action vocabulary plus the static role table.

Roles compose additively through ``allOf``: a role holds its own
permissions plus those of every role reachable along ``allOf`` edges.

Roles:
    SuperAppAdmin - Platform operators (granted by e-mail heuristic)
    OfficeOwner   - Person who created or owns the office
    Admin         - Office administrator; everything Staff can do plus billing
    Specialist    - Staff with document approval and client management
    Staff         - Office member
    Client        - Customer of an office
    Recipient     - Receives documents
    Base          - Abilities every signed-in user has
    UnAuthed      - Anonymous caller
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class Role(StrEnum):
    """Enumerated platform roles."""

    ADMIN = "Admin"
    SPECIALIST = "Specialist"
    STAFF = "Staff"
    OFFICE_OWNER = "OfficeOwner"
    CLIENT = "Client"
    RECIPIENT = "Recipient"
    BASE = "Base"
    UN_AUTHED = "UnAuthed"
    SUPER_APP_ADMIN = "SuperAppAdmin"


class Resource(StrEnum):
    """Enumerated protected resources."""

    USERS = "users"
    TEAMS = "teams"
    OFFICE = "office"
    CLIENTS = "clients"
    DOCS = "docs"
    DOCS_INVITE = "docs_invite"
    DOCS_INVITE_NOTIFY = "docsInviteNotify"
    DOCS_APPROVE = "docsApprove"
    DOCS_APPROVE_IF_TEMPLATE_ALLOWS = "docsApproveIfTemplateAllows"
    DOCS_UN_APPROVE = "docsUnApprove"
    DOCS_SECURE_SEND = "docsSecureSend"
    TEMPLATES = "templates"
    BILLING = "billing"
    REGISTER_USER = "registerUser"
    AI_MESSAGE = "AIMessage"
    AUTHORIZE_ANOTHER = "authorizeAnother"
    INHERIT_ROLE = "inheritRole"
    SELF_ACCOUNT = "selfAccount"
    AUTHENTICATIONS = "authentications"
    INVITE_OFFICE_USER = "inviteOfficeUser"
    INVITE_USER = "inviteUser"
    INVITE_TO_SOFTWARE = "inviteToSoftware"
    USAGE_EVENT = "usageEvent"
    LOG_ERRORS = "logErrors"
    STATS = "stats"
    APP_ADMIN_GLOBAL_TEMPLATES = "appAdmin_globalTemplates"


class CRUDAction(StrEnum):
    """Actions a grant may allow. ``*`` matches any requested action."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    ARCHIVE = "archive"
    WILDCARD = "*"


#: Static role table, loaded once at startup by ``default_registry()``.
#: Keys and value shapes follow the literal config format accepted by
#: ``RoleConfig``: a grant is ``"*"``, a list of actions, or
#: ``{"permissions": [...], "conditions": {...}}``.
ROLES_CONFIG: dict[str, dict[str, Any]] = {
    "SuperAppAdmin": {
        "permissions": {
            "appAdmin_globalTemplates": "*",
        },
    },
    "OfficeOwner": {
        "permissions": {
            "users": "*",
            "office": "*",
            "inviteOfficeUser": "*",
        },
        "conditions": {"hasOfficeSubscription": True},
    },
    "Specialist": {
        "allOf": ["Staff"],
        "permissions": {
            "teams": "*",
            "authorizeAnother": "*",
            "clients": "*",
            "templates": "*",
            "users": ["read"],
            "docs": ["create", "read", "update", "archive"],
            "docsApprove": "*",
        },
        "conditions": {"hasOfficeSubscription": True},
    },
    "Admin": {
        "allOf": ["Staff"],
        "permissions": {
            "authorizeAnother": "*",
            "users": "*",
            "teams": "*",
            "billing": "*",
            "clients": ["read", "create", "update"],
            "templates": ["read", "create", "update", "archive"],
            "office": ["create", "read", "update", "archive"],
            "inviteOfficeUser": ["create"],
        },
    },
    "Staff": {
        "allOf": ["Base"],
        "permissions": {
            "clients": ["read", "create", "update"],
            "templates": ["read"],
            "docs": {
                "permissions": ["create", "read", "update"],
                "conditions": {"hasOfficeSubscription": True},
            },
            "users": ["read"],
            "teams": ["read"],
            "inviteUser": ["create"],
            "AIMessage": ["create"],
            "docsInviteNotify": ["create"],
            "office": ["create", "read"],
            "inheritRole": ["create"],
            "docsUnApprove": ["create"],
            "docsSecureSend": "*",
        },
    },
    "Client": {
        "allOf": ["Base"],
        "permissions": {},
    },
    "Recipient": {
        "allOf": ["Base"],
        "permissions": {},
    },
    "Base": {
        # Any signed-in user
        "allOf": ["UnAuthed"],
        "permissions": {
            # Someone of unknown role might receive a document
            "docs": ["read"],
            "stats": ["create"],
            "authentications": ["create", "read", "update"],
            "usageEvent": ["create"],
            "selfAccount": "*",
            "inviteToSoftware": ["create"],
        },
    },
    "UnAuthed": {
        "permissions": {
            "authentications": ["create"],
            "selfAccount": ["create", "read"],
            "logErrors": ["create"],
        },
    },
}
