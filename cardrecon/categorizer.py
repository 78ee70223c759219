from __future__ import annotations
import logging
from typing import Iterable

import regex
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from .errors import CategorizationDegraded, ValidationError
from .models import CategoryRule, Owner, owned_by

logger = logging.getLogger(__name__)

MATCH_TYPES = ("contains", "starts_with", "exact", "custom")

def build_pattern(match_type: str, value: str) -> str:
    """
    Turns a rule-authoring choice into the regex that gets stored:
      contains X    -> .*X.*
      starts_with X -> ^X.*
      exact X       -> ^X$
      custom        -> verbatim
    """
    if match_type == "custom":
        return value
    text = (value or "").strip()
    if not text:
        raise ValidationError("pattern cannot be empty", field="pattern")

    escaped = regex.escape(text)
    if match_type == "contains":
        return f".*{escaped}.*"
    if match_type == "starts_with":
        return f"^{escaped}.*"
    if match_type == "exact":
        return f"^{escaped}$"
    raise ValidationError(f"match_type must be one of: {', '.join(MATCH_TYPES)}", field="match_type")

def validate_pattern(pattern: str) -> str:
    if pattern is None or not pattern.strip():
        raise ValidationError("pattern cannot be empty", field="pattern")
    try:
        regex.compile(pattern, regex.IGNORECASE)
    except regex.error as e:
        raise ValidationError(f"invalid pattern {pattern!r}: {e}", field="pattern")
    return pattern

def pattern_matches(pattern: str, description: str, timeout: float | None = None) -> bool:
    """
    Case-insensitive search (not fullmatch). An invalid pattern or a search that
    runs past `timeout` seconds counts as no match.
    """
    timeout = settings.regex_timeout if timeout is None else timeout
    try:
        compiled = regex.compile(pattern, regex.IGNORECASE)
    except regex.error:
        logger.debug("skipping invalid pattern %r", pattern)
        return False

    try:
        return compiled.search(description, timeout=timeout) is not None
    except TimeoutError:
        logger.warning("pattern %r timed out on %r", pattern, description)
        return False

def match_rules(description: str, rules: Iterable[CategoryRule], timeout: float | None = None) -> int | None:
    """
    Returns the matched category id, or None if no rule matches.
    First match wins (rules must already be in evaluation order).
    """
    desc = (description or "").strip()
    if not desc:
        return None

    for rule in rules:
        if not rule.is_active:
            continue
        if pattern_matches(rule.pattern, desc, timeout):
            return rule.category_id

    return None

def load_active_rules(db: Session, owner: Owner) -> list[CategoryRule]:
    """Owner's active rules, highest priority first; equal priority -> oldest first."""
    stmt = (
        select(CategoryRule)
        .where(owned_by(CategoryRule, owner), CategoryRule.is_active.is_(True))
        .order_by(CategoryRule.priority.desc(), CategoryRule.created_at.asc(), CategoryRule.id.asc())
    )
    try:
        return list(db.execute(stmt).scalars().all())
    except SQLAlchemyError as e:
        raise CategorizationDegraded(f"could not load rules for {owner}") from e

def resolve_category(db: Session, owner: Owner, description: str) -> int | None:
    # rules are re-read every call; nothing is cached between requests
    return match_rules(description, load_active_rules(db, owner))
