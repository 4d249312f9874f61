"""
MAILDECK - Permission Model

Derived authorization state, rebuilt at every start:

- generated_role_names mirrors the configured role table
- permissions holds the effective operations of each user on each entity

Rules for the rebuild:
    1. A share on a namespace applies to that namespace and all its descendants.
    2. A user's global role grants its `root_namespace_role` on the root
       namespace (and therefore on the whole tree).
    3. A share on any other entity type applies to that entity only.

Both operations rewrite their table inside a single transaction and are
idempotent.
"""
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from sqlalchemy import delete, insert, select

from db.engine import StorageEngine
from db.models import GeneratedRoleName, Namespace, Permission, Share, User
from observability.logging import get_logger


logger = get_logger("maildeck.db.shares")

RoleTable = Mapping[str, Mapping[str, Mapping[str, Any]]]
PermissionKey = Tuple[str, int, int, str]


def namespace_descendants(parents: Mapping[int, Optional[int]]) -> Dict[int, Set[int]]:
    """Map each namespace id to itself plus every namespace below it."""
    children: Dict[int, List[int]] = {ns_id: [] for ns_id in parents}
    for ns_id, parent_id in parents.items():
        if parent_id is not None and parent_id in children:
            children[parent_id].append(ns_id)

    result: Dict[int, Set[int]] = {}
    for ns_id in parents:
        seen: Set[int] = set()
        stack = [ns_id]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(children.get(current, ()))
        result[ns_id] = seen
    return result


def compute_permissions(
    namespaces: Mapping[int, Optional[int]],
    users: Mapping[int, str],
    shares: Iterable[Tuple[str, int, int, str]],
    roles: RoleTable,
) -> Set[PermissionKey]:
    """
    Effective permissions as (entity_type, entity_id, user_id, operation).

    Args:
        namespaces: namespace id -> parent id
        users: user id -> global role
        shares: (entity_type, entity_id, user_id, role)
        roles: configured role table
    """
    descendants = namespace_descendants(namespaces)
    roots = sorted(ns_id for ns_id, parent in namespaces.items() if parent is None)
    root_namespace = roots[0] if roots else None

    grants: List[Tuple[str, int, int, str]] = list(shares)

    if root_namespace is not None:
        for user_id, global_role in users.items():
            role_def = roles.get("global", {}).get(global_role)
            ns_role = role_def.get("root_namespace_role") if role_def else None
            if ns_role:
                grants.append(("namespace", root_namespace, user_id, ns_role))

    permissions: Set[PermissionKey] = set()
    for entity_type, entity_id, user_id, role in grants:
        role_def = roles.get(entity_type, {}).get(role)
        if role_def is None:
            logger.warning(
                "Unknown role in share, ignoring",
                entity_type=entity_type, entity_id=entity_id, role=role, component="DB",
            )
            continue

        if entity_type == "namespace":
            targets = descendants.get(entity_id, {entity_id})
        else:
            targets = {entity_id}

        for target in targets:
            for operation in role_def.get("permissions", ()):
                permissions.add((entity_type, target, user_id, operation))

    return permissions


class PermissionModel:
    """Rebuilds derived authorization tables from shares and roles."""

    def __init__(self, engine: StorageEngine, roles: RoleTable):
        self.engine = engine
        self.roles = roles

    async def regenerate_role_names_table(self) -> int:
        """Rewrite generated_role_names from the role table. Returns the row count."""
        rows = [
            {
                "entity_type": entity_type,
                "role": role,
                "name": role_def.get("name", role),
                "description": role_def.get("description", ""),
            }
            for entity_type, entity_roles in self.roles.items()
            for role, role_def in entity_roles.items()
        ]

        async with self.engine.session() as session:
            await session.execute(delete(GeneratedRoleName))
            if rows:
                await session.execute(insert(GeneratedRoleName), rows)

        logger.debug("Role names regenerated", roles=len(rows), component="DB")
        return len(rows)

    async def rebuild_permissions(self) -> int:
        """Recompute the permissions table. Returns the number of rows written."""
        async with self.engine.session() as session:
            namespaces = {
                row.id: row.parent_id
                for row in (await session.execute(select(Namespace.id, Namespace.parent_id))).all()
            }
            users = {
                row.id: row.role
                for row in (await session.execute(select(User.id, User.role))).all()
            }
            shares = [
                (row.entity_type, row.entity_id, row.user_id, row.role)
                for row in (await session.execute(
                    select(Share.entity_type, Share.entity_id, Share.user_id, Share.role)
                )).all()
            ]

            permissions = compute_permissions(namespaces, users, shares, self.roles)

            await session.execute(delete(Permission))
            if permissions:
                await session.execute(
                    insert(Permission),
                    [
                        {
                            "entity_type": entity_type,
                            "entity_id": entity_id,
                            "user_id": user_id,
                            "operation": operation,
                        }
                        for entity_type, entity_id, user_id, operation in sorted(permissions)
                    ],
                )

        logger.info(
            "Permissions rebuilt",
            users=len(users), shares=len(shares), permissions=len(permissions), component="DB",
        )
        return len(permissions)
