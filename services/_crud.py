from __future__ import annotations
from typing import TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session

T = TypeVar("T")


def commit_refresh(db: Session, obj: T) -> T:
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


def get_or_404(db: Session, model: type[T], key, label: str) -> T:
    obj = db.get(model, key) if key else None
    if obj is None:
        raise HTTPException(404, f"{label} not found")
    return obj
