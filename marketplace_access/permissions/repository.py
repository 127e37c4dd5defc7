"""
SQLAlchemy-backed storage for admin feature grants.

`for_admin` is shaped to be handed to PermissionResolver as its grant
fetcher. Rows naming a feature outside the catalog are skipped, which denies
them.

Feature names written by older versions may differ from the catalog value in
case or whitespace. Such a row still matches its catalog feature. When several
rows resolve to the same feature, the row holding the exact catalog value
wins, otherwise the row with the lowest id. `apply_update` collapses them into one
canonical row.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..tables import AdminPermissionRow
from .catalog import Feature, parse_feature
from .grants import update_grant
from .models import Action, Actor, FeatureGrant

logger = logging.getLogger(__name__)


def _to_domain(row: AdminPermissionRow, feature: Feature) -> FeatureGrant:
    return FeatureGrant(
        admin_id=row.admin_id,
        feature=feature,
        can_access=bool(row.can_access),
        can_create=bool(row.can_create),
        can_edit=bool(row.can_edit),
        can_delete=bool(row.can_delete),
    )


class GrantRepository:
    """Loads and persists FeatureGrant records."""

    def __init__(self, session: Session, correlation_id: Optional[str] = None):
        self.session = session
        self.correlation_id = correlation_id

    def for_admin(self, admin_id: str) -> List[FeatureGrant]:
        return [
            _to_domain(rows[0], feature)
            for feature, rows in self._rows_by_feature(admin_id).items()
        ]

    def apply_update(
        self,
        editor: Actor,
        *,
        admin_id: str,
        feature: Union[Feature, str],
        action: Union[Action, str],
        value: bool,
    ) -> FeatureGrant:
        """Toggle one bit and persist the resulting grant (created if missing)."""
        updated = update_grant(
            editor,
            admin_id=admin_id,
            feature=feature,
            action=action,
            value=value,
            existing=self.for_admin(admin_id),
            correlation_id=self.correlation_id,
        )

        try:
            rows = self._rows_by_feature(updated.admin_id).get(updated.feature, [])
            if rows:
                row, duplicates = rows[0], rows[1:]
                if duplicates:
                    logger.warning(
                        "Collapsing duplicate grant rows",
                        extra={
                            "admin_id": updated.admin_id,
                            "feature": updated.feature.value,
                            "duplicate_count": len(duplicates),
                            "correlation_id": self.correlation_id,
                        },
                    )
                    for duplicate in duplicates:
                        self.session.delete(duplicate)
                    # deletes must land before the rename below can reuse the name
                    self.session.flush()
                row.feature = updated.feature.value
            else:
                row = AdminPermissionRow(admin_id=updated.admin_id, feature=updated.feature.value)
                self.session.add(row)
            row.can_access = updated.can_access
            row.can_create = updated.can_create
            row.can_edit = updated.can_edit
            row.can_delete = updated.can_delete
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        return updated

    def _rows_by_feature(self, admin_id: str) -> Dict[Feature, List[AdminPermissionRow]]:
        """Group an admin's rows by catalog feature, preferred row first."""
        rows = (
            self.session.query(AdminPermissionRow)
            .filter(AdminPermissionRow.admin_id == str(admin_id).strip())
            .order_by(AdminPermissionRow.id)
            .all()
        )
        grouped: Dict[Feature, List[AdminPermissionRow]] = {}
        for row in rows:
            feature = parse_feature(row.feature)
            if feature is None:
                logger.warning(
                    "Skipping grant for unknown feature",
                    extra={"admin_id": row.admin_id, "feature": row.feature},
                )
                continue
            grouped.setdefault(feature, []).append(row)
        for feature, matches in grouped.items():
            matches.sort(key=lambda row: row.feature != feature.value)
        return grouped
