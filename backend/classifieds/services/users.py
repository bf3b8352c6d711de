from __future__ import annotations

from typing import Any
from urllib.parse import quote
from uuid import UUID

from ..auth_utils import hash_password, verify_password
from ..errors import Conflict, DuplicateRecord, NotFound
from ..persistence import Persistence

COLLECTION = "users"
AVATAR_URL = "https://api.dicebear.com/9.x/initials/svg?seed={seed}"


def register_user(persistence: Persistence, username: str, email: str, password: str) -> dict[str, Any]:
    if persistence.find_one(COLLECTION, {"username": username}) is not None:
        raise Conflict("username already taken", [("username", "already taken")])
    if persistence.find_one(COLLECTION, {"email": email}) is not None:
        raise Conflict("email already registered", [("email", "already registered")])
    try:
        return _insert_user(persistence, username, email, password)
    except DuplicateRecord as exc:
        raise Conflict("username or email already registered") from exc


def _insert_user(persistence: Persistence, username: str, email: str, password: str) -> dict[str, Any]:
    return persistence.insert(
        COLLECTION,
        {
            "username": username,
            "email": email,
            "passwordHash": hash_password(password),
            "profileImageUrl": AVATAR_URL.format(seed=quote(username)),
            "pushToken": None,
            "notificationCount": 0,
            "lastNotificationDate": None,
        },
    )


def authenticate_user(persistence: Persistence, email: str, password: str) -> dict[str, Any] | None:
    user = persistence.find_one(COLLECTION, {"email": email})
    if user is None or not verify_password(password, user.get("passwordHash", "")):
        return None
    return user


def get_user(persistence: Persistence, user_id: UUID) -> dict[str, Any] | None:
    return persistence.get(COLLECTION, user_id)


def set_push_token(persistence: Persistence, user_id: UUID, token: str) -> dict[str, Any]:
    if get_user(persistence, user_id) is None:
        raise NotFound("user not found")
    return persistence.update_own_fields(COLLECTION, user_id, {"pushToken": token})


def profile(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": user["id"],
        "username": user["username"],
        "email": user["email"],
        "profileImageUrl": user.get("profileImageUrl"),
        "createdAt": user["createdAt"],
    }
