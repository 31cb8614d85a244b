# barberia_core/servicios/autenticacion.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Barbero
from barberia_core.security import (
    verify_password,
    create_access_token,
    get_current_barbero,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login")
def login(
    form: OAuth2PasswordRequestForm = Depends(),
    session: Session = Depends(get_session),
):
    barbero = session.exec(
        select(Barbero).where(Barbero.email == form.username)
    ).first()
    if not barbero or not verify_password(form.password, barbero.password_hash):
        logger.warning("Login fallido para %s", form.username)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Usuario o contraseña incorrectos",
        )
    if not barbero.activo:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Barbero inactivo",
        )

    token = create_access_token(barbero.email)
    return {"access_token": token, "token_type": "bearer"}


@router.get("/me")
def leer_perfil(
    barbero: Barbero = Depends(get_current_barbero),
):
    return {
        "id": barbero.id,
        "email": barbero.email,
        "nombre": barbero.nombre,
        "activo": barbero.activo,
    }
