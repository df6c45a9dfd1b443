"""Per-account credential store.

Stored settings win; anything left blank falls back to the environment
(API key/secret) or the static account table (license number).
"""

import logging
import sqlite3
from typing import Optional

import config
import db
from errors import ConfigurationError, ValidationError
from models import Agent, Credential

logger = logging.getLogger(__name__)


def _known_account(account_id: str) -> dict:
    account = config.get_account(account_id)
    if account is None:
        raise ValidationError(f"Unknown account: {account_id}")
    return account


def get_credential(account_id: str, conn: Optional[sqlite3.Connection] = None) -> Credential:
    account = _known_account(account_id)
    stored = db.get_user_settings(account_id, conn=conn) or {}
    env = config.env_credentials(account_id)

    return Credential(
        account_id=account_id,
        api_key=stored.get("api_key") or env["api_key"],
        api_secret=stored.get("api_secret") or env["api_secret"],
        license_number=stored.get("license_number") or account["license_number"],
        agents=[
            Agent(id=int(a["id"]), name=a.get("name", ""),
                  public_profile_id=a.get("public_profile_id", ""))
            for a in stored.get("agents", [])
        ],
    )


def require_credential(account_id: str, conn: Optional[sqlite3.Connection] = None) -> Credential:
    """Like get_credential, but fail when no API key/secret is configured."""
    credential = get_credential(account_id, conn=conn)
    if not credential.api_key or not credential.api_secret:
        raise ConfigurationError(f"API credentials not configured for account {account_id}")
    return credential


def save_credential(credential: Credential, conn: Optional[sqlite3.Connection] = None) -> Credential:
    """Overwrite the stored record for the credential's account."""
    _known_account(credential.account_id)
    db.save_user_settings(
        credential.account_id,
        api_key=credential.api_key,
        api_secret=credential.api_secret,
        license_number=credential.license_number,
        agents=[
            {"id": a.id, "name": a.name, "public_profile_id": a.public_profile_id}
            for a in credential.agents
        ],
        conn=conn,
    )
    logger.info(f"Saved settings for account {credential.account_id} ({len(credential.agents)} agents)")
    return credential


def resolve_agent_id(credential: Credential, agent_name: str) -> Optional[int]:
    """Match an agent by name (case-insensitive), else the first cached agent."""
    if not credential.agents:
        return None
    wanted = (agent_name or "").strip().lower()
    for agent in credential.agents:
        if agent.name.strip().lower() == wanted:
            return agent.id
    fallback = credential.agents[0]
    if wanted:
        logger.warning(
            f"No agent named {agent_name!r} on account {credential.account_id}; "
            f"assigning {fallback.name!r} ({fallback.id})"
        )
    return fallback.id
