from dataclasses import dataclass
from typing import List, Tuple

ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLE_MARKETER = "marketer"
ROLES = (ROLE_ADMIN, ROLE_EDITOR, ROLE_MARKETER)


@dataclass(frozen=True)
class MenuItem:
    path: str
    label: str
    roles: Tuple[str, ...]

    def visible_to(self, role: str) -> bool:
        return role in self.roles


MENU: List[MenuItem] = [
    MenuItem("/", "Dashboard", ROLES),
    MenuItem("/manage", "Manage Content", (ROLE_ADMIN, ROLE_EDITOR)),
    MenuItem("/add-story", "Create Story", (ROLE_ADMIN, ROLE_EDITOR)),
    MenuItem("/add-episode", "Add Episode", (ROLE_ADMIN, ROLE_EDITOR)),
    MenuItem("/users", "Users", (ROLE_ADMIN,)),
    MenuItem("/marketing", "Marketing", (ROLE_ADMIN, ROLE_MARKETER)),
    MenuItem("/settings", "Settings", (ROLE_ADMIN,)),
]


def visible_menu(role: str) -> List[MenuItem]:
    return [item for item in MENU if item.visible_to(role)]


def roles_for(path: str) -> Tuple[str, ...]:
    """Roles that may open the section mounted at ``path``."""
    for item in MENU:
        if item.path == path:
            return item.roles
    raise KeyError(path)
