"""
Pattern store for browser automation.

Patterns are shared by all owners. Built-in patterns are seeded at startup
and cannot be deleted; custom patterns can be added, deleted, exported and
imported. Each pattern type is tried in (priority desc, match_count desc)
order, so patterns that keep matching drift to the front.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc

from ..exceptions import PatternValidationError
from .models import Pattern, PATTERN_TYPES, utcnow

logger = logging.getLogger(__name__)

EXPORT_VERSION = '1.0'

DEFAULT_PATTERNS = [
    # Button selectors
    {'name': 'Unsubscribe button', 'type': 'button_selector',
     'selector': 'button:has-text("unsubscribe")', 'priority': 10},
    {'name': 'Unsubscribe link', 'type': 'button_selector',
     'selector': 'a:has-text("unsubscribe")', 'priority': 9},
    {'name': 'Opt-out button', 'type': 'button_selector',
     'selector': 'button:has-text("opt out")', 'priority': 8},
    {'name': 'Remove me button', 'type': 'button_selector',
     'selector': 'button:has-text("remove me")', 'priority': 7},
    {'name': 'Confirm unsubscribe', 'type': 'button_selector',
     'selector': 'button:has-text("confirm")', 'priority': 6},
    {'name': 'Yes button', 'type': 'button_selector',
     'selector': 'button:has-text("yes")', 'priority': 5},
    {'name': 'Submit input', 'type': 'button_selector',
     'selector': 'input[type="submit"]', 'priority': 4},

    # Success text
    {'name': 'Successfully unsubscribed', 'type': 'success_text',
     'selector': 'successfully unsubscribed', 'priority': 10},
    {'name': 'You have been unsubscribed', 'type': 'success_text',
     'selector': 'you have been unsubscribed', 'priority': 10},
    {'name': 'Unsubscribe successful', 'type': 'success_text',
     'selector': 'unsubscribe successful', 'priority': 10},
    {'name': 'Removed from mailing list', 'type': 'success_text',
     'selector': 'removed from our mailing list', 'priority': 9},
    {'name': 'No longer receive', 'type': 'success_text',
     'selector': 'will no longer receive', 'priority': 8},
    {'name': 'Preferences updated', 'type': 'success_text',
     'selector': 'preferences updated', 'priority': 7},

    # Error text
    {'name': 'Link expired', 'type': 'error_text',
     'selector': 'link has expired', 'priority': 10},
    {'name': 'Error occurred', 'type': 'error_text',
     'selector': 'error occurred', 'priority': 9},
    {'name': 'Something went wrong', 'type': 'error_text',
     'selector': 'something went wrong', 'priority': 9},
    {'name': 'Invalid request', 'type': 'error_text',
     'selector': 'invalid request', 'priority': 8},
    {'name': 'Try again', 'type': 'error_text',
     'selector': 'please try again', 'priority': 7},
]


def _validate(name: Any, pattern_type: Any, selector: Any):
    if not isinstance(name, str) or not name.strip():
        raise PatternValidationError("Pattern name is required")
    if pattern_type not in PATTERN_TYPES:
        raise PatternValidationError(
            f"Pattern type must be one of: {', '.join(PATTERN_TYPES)}",
            {'type': pattern_type}
        )
    if not isinstance(selector, str) or not selector.strip():
        raise PatternValidationError("Pattern selector is required", {'name': name})


class PatternStore:
    """Ranked, learnable selector and text patterns."""

    def __init__(self, db, audit=None):
        self.db = db
        self.audit = audit

    def seed_default_patterns(self) -> int:
        """Insert any missing built-in patterns. Returns how many were added."""
        def _seed(session):
            added = 0
            for pattern in DEFAULT_PATTERNS:
                exists = session.query(Pattern.id).filter_by(
                    name=pattern['name'], type=pattern['type']
                ).first()
                if exists is None:
                    session.add(Pattern(is_builtin=True, match_count=0, **pattern))
                    added += 1
            return added

        added = self.db.run(_seed)
        if added:
            logger.info("Seeded %d default patterns", added)
        return added

    def get_patterns(self, pattern_type: Optional[str] = None) -> List[Pattern]:
        """Patterns in trial order, optionally restricted to one type."""
        def _query(session):
            query = session.query(Pattern)
            if pattern_type:
                query = query.filter(Pattern.type == pattern_type)
            else:
                query = query.order_by(Pattern.type)
            return query.order_by(
                desc(Pattern.priority), desc(Pattern.match_count), Pattern.id
            ).all()

        return self.db.run(_query)

    def add_pattern(self, name: str, pattern_type: str, selector: str,
                    priority: int = 0) -> Pattern:
        """
        Add a custom pattern.

        Raises:
            PatternValidationError: if the pattern is malformed or the
                (name, type) pair already exists
        """
        _validate(name, pattern_type, selector)

        def _insert(session):
            exists = session.query(Pattern.id).filter_by(name=name.strip(), type=pattern_type).first()
            if exists is not None:
                raise PatternValidationError("Pattern already exists",
                                             {'name': name, 'type': pattern_type})
            pattern = Pattern(name=name.strip(), type=pattern_type, selector=selector,
                              priority=int(priority or 0), match_count=0, is_builtin=False)
            session.add(pattern)
            session.flush()
            return pattern

        return self.db.run(_insert)

    def delete_pattern(self, pattern_id: int) -> bool:
        """Delete a custom pattern. Built-in patterns are never deleted."""
        def _delete(session):
            pattern = session.query(Pattern).filter_by(id=pattern_id, is_builtin=False).first()
            if pattern is None:
                return False
            session.delete(pattern)
            return True

        return self.db.run(_delete)

    def increment_match_count(self, pattern_id: int):
        """Reinforce a pattern after it fired."""
        def _increment(session):
            session.query(Pattern).filter_by(id=pattern_id).update({
                Pattern.match_count: Pattern.match_count + 1,
                Pattern.last_matched_at: utcnow(),
            }, synchronize_session=False)

        self.db.run(_increment)

    def export_patterns(self, owner_id: Optional[str] = None) -> Dict[str, Any]:
        """Export custom patterns as a portable document."""
        patterns = [p for p in self.get_patterns() if not p.is_builtin]
        document = {
            'version': EXPORT_VERSION,
            'exportedAt': utcnow().isoformat() + 'Z',
            'patterns': [
                {'name': p.name, 'type': p.type, 'selector': p.selector}
                for p in patterns
            ],
        }
        if self.audit and owner_id:
            self.audit.log(owner_id, 'pattern_exported', {'count': len(patterns)})
        return document

    def import_patterns(self, data: Dict[str, Any], owner_id: Optional[str] = None) -> Dict[str, int]:
        """
        Import patterns from an export document.

        Malformed entries and entries that collide with an existing
        (name, type) pair are skipped and counted.

        Raises:
            PatternValidationError: if the document itself is not an export
        """
        if not isinstance(data, dict) or not isinstance(data.get('patterns'), list):
            raise PatternValidationError("Import document must contain a patterns list")

        imported = 0
        skipped = 0
        for entry in data['patterns']:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            try:
                self.add_pattern(entry.get('name'), entry.get('type'), entry.get('selector'))
                imported += 1
            except PatternValidationError as e:
                logger.debug("Skipping pattern during import: %s", e)
                skipped += 1

        if self.audit and owner_id:
            self.audit.log(owner_id, 'pattern_imported', {'imported': imported, 'skipped': skipped})
        return {'imported': imported, 'skipped': skipped}
