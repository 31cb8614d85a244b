# barberia_core/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# .env opcional en la raíz del proyecto
load_dotenv(dotenv_path=Path(__file__).resolve().parent.parent / ".env")

# URL de la base de datos de la barbería.
# Puedes sobreescribirla con la variable de entorno BARBERIA_DB_URL
DB_URL = os.getenv("BARBERIA_DB_URL", "sqlite:///./datos_barberia.db")

SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET")
ACCESS_MIN = int(os.getenv("ACCESS_MINUTES", "720"))  # 12h default

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Programa de fidelización
# Monto fijo del bono por corte gratis (COP), no es un porcentaje
BONO_CORTE_GRATIS = float(os.getenv("BONO_CORTE_GRATIS", "15000"))
CORTES_POR_CORTE_GRATIS = int(os.getenv("CORTES_POR_CORTE_GRATIS", "10"))
XP_POR_SERVICIO = 10
XP_MINIMO_POR_VISITA = 5
XP_POR_NIVEL = 100
