# barberia_core/servicios/reportes.py
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlmodel import Session

from barberia_core.db.conexion import get_session
from barberia_core.db.modelos import Barbero, MedioPago, Venta, ahora_utc
from barberia_core.security import get_current_barbero
from barberia_core.servicios.disponibilidad import dia_utc
from barberia_core.servicios.ventas import ventas_del_dia

router = APIRouter()


def resumen_dia(session: Session, barbero_id: int, fecha) -> Dict[str, Any]:
    dia = dia_utc(fecha)
    ventas: List[Venta] = ventas_del_dia(session, barbero_id, dia)

    por_medio: Dict[MedioPago, Dict[str, float | int]] = {}
    for v in ventas:
        mp = v.medio_pago
        if mp not in por_medio:
            por_medio[mp] = {"monto_total": 0.0, "cantidad": 0}
        por_medio[mp]["monto_total"] += v.total_final
        por_medio[mp]["cantidad"] += 1

    detalle_medios = [
        {
            "medio_pago": mp.value,
            "monto_total": datos["monto_total"],
            "cantidad_ventas": datos["cantidad"],
        }
        for mp, datos in por_medio.items()
    ]

    return {
        "fecha": dia.isoformat(),
        "barbero_id": barbero_id,
        "totales": {
            "subtotal": sum(v.subtotal for v in ventas),
            "descuentos": sum(v.descuento for v in ventas),
            "monto_total": sum(v.total_final for v in ventas),
            "cantidad_ventas": len(ventas),
            "cortes_gratis_redimidos": sum(1 for v in ventas if v.es_corte_gratis),
        },
        "por_medio_pago": detalle_medios,
    }


@router.get("/resumen")
def resumen_endpoint(
    fecha: Optional[str] = None,
    session: Session = Depends(get_session),
    barbero: Barbero = Depends(get_current_barbero),
) -> Dict[str, Any]:
    return resumen_dia(session, barbero.id, fecha or ahora_utc().date())
