from __future__ import annotations
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .categorizer import build_pattern, pattern_matches, validate_pattern
from .errors import NotFoundError, PersistenceError, ValidationError
from .models import CategoryRule, Owner, Transaction, owned_by

logger = logging.getLogger(__name__)

def list_rules(db: Session, owner: Owner) -> list[CategoryRule]:
    stmt = (
        select(CategoryRule)
        .where(owned_by(CategoryRule, owner))
        .order_by(CategoryRule.priority.desc(), CategoryRule.created_at.asc(), CategoryRule.id.asc())
    )
    return list(db.execute(stmt).scalars().all())

def get_rule(db: Session, owner: Owner, rule_id: int) -> CategoryRule:
    rule = db.execute(
        select(CategoryRule).where(CategoryRule.id == rule_id, owned_by(CategoryRule, owner))
    ).scalar_one_or_none()
    if rule is None:
        raise NotFoundError(f"rule {rule_id} not found", field="rule_id")
    return rule

def _ensure_unique(db: Session, owner: Owner, pattern: str, exclude_id: int | None = None) -> None:
    stmt = select(CategoryRule.id).where(owned_by(CategoryRule, owner), CategoryRule.pattern == pattern)
    if exclude_id is not None:
        stmt = stmt.where(CategoryRule.id != exclude_id)
    if db.execute(stmt).first() is not None:
        raise ValidationError(f"a rule with pattern {pattern!r} already exists", field="pattern")

def find_uncategorized_matching(db: Session, owner: Owner, pattern: str) -> list[int]:
    """Ids of the owner's visible uncategorized transactions whose description matches `pattern`."""
    rows = db.execute(
        select(Transaction.id, Transaction.description)
        .where(
            owned_by(Transaction, owner),
            Transaction.category_id.is_(None),
            Transaction.is_hidden.is_(False),
        )
    ).all()
    return [tx_id for tx_id, description in rows if pattern_matches(pattern, description or "")]

def apply_rule_retroactively(db: Session, rule: CategoryRule) -> int:
    """
    Assigns the rule's category to every matching uncategorized transaction of
    the rule's owner with a single UPDATE. Returns the number of rows changed.
    """
    owner = Owner(rule.owner_type, rule.owner_id)
    ids = find_uncategorized_matching(db, owner, rule.pattern)
    if not ids:
        return 0

    result = db.execute(
        update(Transaction)
        .where(Transaction.id.in_(ids), Transaction.category_id.is_(None))
        .values(category_id=rule.category_id)
    )
    db.commit()
    return result.rowcount

def create_rule(
    db: Session,
    owner: Owner,
    pattern: str,
    category_id: int,
    priority: int = 0,
    match_type: str = "custom",
) -> tuple[CategoryRule, int]:
    """
    Persists a rule, then applies it once to existing uncategorized transactions.
    The retroactive step can never fail creation; on error it reports 0.
    """
    pattern = validate_pattern(build_pattern(match_type, pattern))
    _ensure_unique(db, owner, pattern)

    rule = CategoryRule(
        pattern=pattern,
        category_id=category_id,
        priority=priority,
        is_active=True,
        owner_type=owner.owner_type,
        owner_id=owner.owner_id,
    )
    db.add(rule)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError(f"a rule with pattern {pattern!r} already exists", field="pattern") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"could not save rule: {e}") from e
    db.refresh(rule)
    logger.info("created rule %s %r -> category %s for %s", rule.id, rule.pattern, category_id, owner)

    try:
        updated = apply_rule_retroactively(db, rule)
    except Exception:
        db.rollback()
        logger.exception("retroactive application of rule %s failed", rule.id)
        updated = 0
    else:
        logger.info("rule %s categorized %d existing transactions", rule.id, updated)

    return rule, updated

def update_rule(db: Session, owner: Owner, rule_id: int, **changes) -> CategoryRule:
    """Edits never re-run the retroactive pass."""
    rule = get_rule(db, owner, rule_id)

    if changes.get("pattern") is not None:
        pattern = validate_pattern(build_pattern(changes.get("match_type") or "custom", changes["pattern"]))
        _ensure_unique(db, owner, pattern, exclude_id=rule.id)
        rule.pattern = pattern
    for name in ("category_id", "priority", "is_active"):
        if changes.get(name) is not None:
            setattr(rule, name, changes[name])

    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError(f"a rule with pattern {rule.pattern!r} already exists", field="pattern") from e
    db.refresh(rule)
    return rule

def reorder_rules(db: Session, owner: Owner, items: list[tuple[int, int]]) -> list[CategoryRule]:
    """items: (rule_id, priority) pairs. All or nothing."""
    if not items:
        raise ValidationError("no rules to reorder", field="items")

    ids = [rule_id for rule_id, _ in items]
    if len(set(ids)) != len(ids):
        raise ValidationError("duplicate rule id in reorder request", field="items")

    rules = {
        r.id: r for r in db.execute(
            select(CategoryRule).where(owned_by(CategoryRule, owner), CategoryRule.id.in_(ids))
        ).scalars().all()
    }
    missing = [rule_id for rule_id in ids if rule_id not in rules]
    if missing:
        raise NotFoundError(f"rules not found: {missing}", field="items")

    for rule_id, priority in items:
        rules[rule_id].priority = priority
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"could not reorder rules: {e}") from e

    return list_rules(db, owner)

def delete_rule(db: Session, owner: Owner, rule_id: int) -> int:
    rule = get_rule(db, owner, rule_id)
    db.delete(rule)
    db.commit()
    logger.info("deleted rule %s for %s", rule_id, owner)
    return rule_id

def preview_pattern(db: Session, owner: Owner, pattern: str, match_type: str = "custom", limit: int = 10) -> dict:
    """Dry run of a pattern against all of the owner's transactions."""
    pattern = validate_pattern(build_pattern(match_type, pattern))
    txs = list(db.execute(
        select(Transaction).where(owned_by(Transaction, owner)).order_by(Transaction.date.desc())
    ).scalars().all())
    matches = [tx for tx in txs if pattern_matches(pattern, tx.description or "")]
    return {"pattern": pattern, "match_count": len(matches), "matches": matches[:limit]}
