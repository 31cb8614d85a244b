# crear_barbero.py
import argparse

from sqlmodel import Session, select

from barberia_core.db.conexion import engine, init_db
from barberia_core.db.modelos import Barbero
from barberia_core.security import get_password_hash


def crear_o_actualizar_barbero(
    session: Session, email: str, nombre: str, password: str
) -> Barbero:
    existente = session.exec(
        select(Barbero).where(Barbero.email == email)
    ).first()

    if existente:
        # Si ya existe, solo le cambio la contraseña y lo reactivo
        existente.password_hash = get_password_hash(password)
        existente.activo = True
        if nombre:
            existente.nombre = nombre
        session.add(existente)
        session.commit()
        session.refresh(existente)
        return existente

    barbero = Barbero(
        email=email,
        nombre=nombre,
        password_hash=get_password_hash(password),
        activo=True,
    )
    session.add(barbero)
    session.commit()
    session.refresh(barbero)
    return barbero


def main():
    parser = argparse.ArgumentParser(description="Crea o resetea la cuenta de un barbero")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--nombre", default="Barbero")
    args = parser.parse_args()

    init_db()
    with Session(engine, expire_on_commit=False) as session:
        barbero = crear_o_actualizar_barbero(session, args.email, args.nombre, args.password)
        print(f"Barbero listo: id={barbero.id}, email={barbero.email}")


if __name__ == "__main__":
    main()
