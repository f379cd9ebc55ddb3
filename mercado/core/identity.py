from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.store import Profile
from .errors import SessionExpired, StoreNotConfigured


@dataclass(frozen=True)
class CurrentUser:
    id: int
    store_id: Optional[int]


def resolve_user(db: Session, user_id: Optional[int]) -> Optional[CurrentUser]:
    if user_id is None:
        return None
    profile = db.get(Profile, user_id)
    if profile is None:
        return None
    return CurrentUser(id=profile.id, store_id=profile.store_id)


def current_user(
    x_user_id: Optional[int] = Header(default=None),
    db: Session = Depends(get_db),
) -> Optional[CurrentUser]:
    # La autenticación es externa; aquí sólo se resuelve el perfil del operador.
    return resolve_user(db, x_user_id)


def require_user(user: Optional[CurrentUser]) -> CurrentUser:
    if user is None:
        raise SessionExpired("Sessão expirada. Faça login novamente.")
    return user


def require_store(user: Optional[CurrentUser]) -> int:
    user = require_user(user)
    if user.store_id is None:
        raise StoreNotConfigured("Você precisa configurar uma loja primeiro.")
    return user.store_id
