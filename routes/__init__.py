from . import (
    admin_stats,
    auth,
    chat,
    clients,
    eods,
    helpers,
    memos,
    projects,
    users,
)

__all__ = [
    "admin_stats",
    "auth",
    "chat",
    "clients",
    "eods",
    "helpers",
    "memos",
    "projects",
    "users",
]
