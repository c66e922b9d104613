"""
Role permission resolution.

Merges the CRUD grants of every role a user holds into one decision:
union of allows, widest scope, merged conditions. When the context
targets an existing record, the resolved scope must also contain it.
"""

from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from dhool_access.utils.logger import Logger
from .models import (
    AccessContext,
    ContextDocument,
    ContextUser,
    CrudAction,
    DataScope,
    Permission,
    PermissionResult,
    UserRole,
    resolve_crud_action,
    widest_scope,
)

logger = Logger(__name__)


def _matches(record_value: Optional[str], user_value: Optional[str]) -> bool:
    return record_value is not None and record_value == user_value


def record_in_scope(user: ContextUser, document: ContextDocument, scope) -> bool:
    """
    Check a record against a data scope.

    Each scope contains the narrower ones, so ownership satisfies every
    scope and a team match satisfies department scope.
      - own        -> record owner is the user
      - team       -> same team, or owned
      - department -> same department, same team, or owned
      - all        -> always
    """
    owned = _matches(document.owner, user.id)
    if scope == DataScope.OWN:
        return owned

    same_team = owned or _matches(document.team, user.team)
    if scope == DataScope.TEAM:
        return same_team

    if scope == DataScope.DEPARTMENT:
        return same_team or _matches(document.department, user.department)

    return scope == DataScope.ALL


class PermissionResolver:
    """Resolves CRUD permission and data scope from a user's roles"""

    def iter_roles(self, roles: Mapping[str, UserRole], role_ids: Sequence[str]) -> Iterator[UserRole]:
        """
        Yield the user's roles in assignment order, each preceded by the
        roles it inherits. A role is yielded once; unknown ids and
        inheritance cycles are skipped.
        """
        seen: Set[str] = set()

        def expand(role_id: str, trail: Tuple[str, ...]) -> Iterator[UserRole]:
            if role_id in seen or role_id in trail:
                return
            role = roles.get(role_id)
            if role is None:
                logger.debug(f"Role '{role_id}' is not registered")
                return
            for parent_id in role.inherits:
                yield from expand(parent_id, trail + (role_id,))
            if role_id not in seen:
                seen.add(role_id)
                yield role

        for role_id in role_ids:
            yield from expand(role_id, ())

    def matching_grants(
        self,
        roles: Mapping[str, UserRole],
        context: AccessContext,
        doc_type: str,
        action: CrudAction,
    ) -> List[Tuple[UserRole, Permission]]:
        """Allowing grants in role order; inside a role, ascending permission priority"""
        grants = []
        for role in self.iter_roles(roles, context.user.roles):
            matching = [
                permission
                for permission in role.permissions_for(doc_type)
                if permission.action == action and permission.allowed
            ]
            for permission in sorted(matching, key=lambda p: p.priority):
                grants.append((role, permission))
        return grants

    def check_permission(
        self,
        roles: Mapping[str, UserRole],
        context: AccessContext,
        doc_type: str,
        action,
    ) -> PermissionResult:
        crud_action = resolve_crud_action(action)
        if crud_action is None:
            logger.debug(f"Unknown action {action!r} on '{doc_type}' denied")
            return PermissionResult.denied()

        grants = self.matching_grants(roles, context, doc_type, crud_action)
        if not grants:
            return PermissionResult.denied()

        scope = widest_scope(
            *(permission.effective_scope(role.default_scope) for role, permission in grants)
        )

        # Later roles win key collisions
        conditions: Dict[str, Any] = {}
        for _, permission in grants:
            if permission.conditions:
                conditions.update(permission.conditions)

        allowed = True
        if context.document is not None:
            allowed = record_in_scope(context.user, context.document, scope)
            if not allowed:
                logger.debug(
                    f"Record outside '{scope.value}' scope for user '{context.user.id}' "
                    f"on {doc_type}.{crud_action.value}"
                )

        return PermissionResult(
            allowed=allowed,
            scope=scope,
            conditions=conditions or None,
        )

    def get_data_scope(
        self,
        roles: Mapping[str, UserRole],
        context: AccessContext,
        doc_type: str,
        action=CrudAction.READ,
    ) -> DataScope:
        return self.check_permission(roles, context, doc_type, action).scope
