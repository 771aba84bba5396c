from __future__ import annotations

from typing import Iterable, Optional

from models import CategoryRule, Transaction


def rule_matches(rule: CategoryRule, txn: Transaction) -> bool:
    """Every non-blank predicate must hold; blank ones match anything."""
    if rule.type is not None and rule.type != txn.type:
        return False
    if rule.description and rule.description not in (txn.description or ""):
        return False
    if rule.iban and rule.iban not in (txn.external_iban or ""):
        return False
    return True


def select_rule(
    rules: Iterable[CategoryRule], txn: Transaction
) -> Optional[CategoryRule]:
    # Most recently created rule wins; ids grow monotonically per database.
    winner: Optional[CategoryRule] = None
    for rule in rules:
        if not rule_matches(rule, txn):
            continue
        if winner is None or rule.id > winner.id:
            winner = rule
    return winner


def categorize(
    rules: Iterable[CategoryRule], txn: Transaction
) -> Optional[CategoryRule]:
    """Assign the winning rule's category to an uncategorized transaction."""
    if txn.is_transfer or txn.category_id is not None:
        return None
    rule = select_rule(rules, txn)
    if rule is not None:
        txn.category_id = rule.category_id
    return rule


def backfill(rule: CategoryRule, txns: Iterable[Transaction]) -> list[Transaction]:
    changed: list[Transaction] = []
    for txn in txns:
        if txn.deleted_at is not None or txn.is_transfer:
            continue
        if txn.category_id is not None:
            continue
        if rule_matches(rule, txn):
            txn.category_id = rule.category_id
            changed.append(txn)
    return changed
