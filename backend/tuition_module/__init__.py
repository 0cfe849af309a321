import logging

from fastapi import HTTPException
from sqlalchemy.orm import Session

from .config import settings
from .database import Base, engine
from .records import seed_feature_toggles
from .routes import functions_router, router
from .services import init_admin


logger = logging.getLogger(__name__)


def init_tuition_module() -> None:
    Base.metadata.create_all(bind=engine)
    db = Session(bind=engine)
    try:
        seed_feature_toggles(db)
        if settings.init_admin_password:
            try:
                logger.info(init_admin(db)["message"])
            except HTTPException as exc:
                logger.warning(f"Admin bootstrap skipped: {exc.detail}")
    finally:
        db.close()


__all__ = ["router", "functions_router", "init_tuition_module"]
