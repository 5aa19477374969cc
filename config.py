"""Configuration du bot de points.

Toutes les valeurs sont lues une seule fois depuis l'environnement au
chargement du module et considérées comme fixes ensuite."""

import os
import time


def _resolve_data_dir() -> str:
    """Resolve the directory used for persistent storage.

    Priority order:
    1. ``DATA_DIR`` environment variable
    2. ``/app/data`` (Railway default mount)
    3. ``/data`` legacy path
    """
    env = os.getenv("DATA_DIR")
    if env:
        return env
    if os.path.isdir("/app/data"):
        return "/app/data"
    return "/data"


# ── Informations globales ──────────────────────────────────────
GUILD_ID: int = int(os.getenv("GUILD_ID", "0"))

TZ: str = os.getenv("TZ", "UTC")
os.environ["TZ"] = TZ
try:
    time.tzset()
except AttributeError:
    # ``tzset`` n'existe pas sur toutes les plateformes (ex: Windows)
    pass

POINTS_TZ: str = os.getenv("POINTS_TZ", "UTC")
"""Fuseau utilisé pour découper les journées d'activité."""

# ── Persistance et I/O ───────────────────────────────────────
DATA_DIR: str = _resolve_data_dir()
"""Répertoire de stockage persistant."""

POINTS_CACHE_FILE: str = os.getenv(
    "POINTS_CACHE_FILE", os.path.join(DATA_DIR, "points", "users.json")
)
"""Cache local des fiches utilisateur, utilisé quand l'API distante est injoignable."""

# ── API distante (tableur) ───────────────────────────────────
POINTS_API_URL: str = os.getenv("POINTS_API_URL", "")
"""Point d'entrée de l'API du tableur."""

POINTS_API_KEY: str | None = os.getenv("POINTS_API_KEY") or None
"""Clé optionnelle envoyée en ``Authorization: Bearer``."""

POINTS_API_TIMEOUT_SECONDS: float = float(
    os.getenv("POINTS_API_TIMEOUT_SECONDS", "15")
)

# ── Caches mémoire ───────────────────────────────────────────
RECORD_CACHE_TTL_SECONDS: float = float(
    os.getenv("RECORD_CACHE_TTL_SECONDS", str(15 * 60))
)
"""Durée de vie d'une fiche utilisateur en cache."""

RANKING_CACHE_TTL_SECONDS: float = float(
    os.getenv("RANKING_CACHE_TTL_SECONDS", str(15 * 60))
)
"""Durée de vie d'un classement de serveur en cache."""

# ── Alertes ──────────────────────────────────────────────────
CRITICAL_LOG_CHANNEL_ID: int = int(os.getenv("CRITICAL_LOG_CHANNEL_ID", "0"))
