"""App settings.

Flask loads this module on startup via ``app.config.from_pyfile(...)``.
Environment overrides live in ``config.Config`` and are applied afterwards.
"""

# Single source of truth for default app configuration.
SETTINGS: dict[str, object] = {
    # Flask
    "SECRET_KEY": "dev-not-secret",
    # Logging
    "LOG_LEVEL": "INFO",
    # Database; empty means the local SQLite file under data/
    "DATABASE_URL": "",
    # VIES checkVat SOAP endpoint (EU VAT number registry)
    "VIES_URL": "https://ec.europa.eu/taxation_customs/vies/services/checkVatService",
    "VIES_TIMEOUT_S": 10.0,
    # Response caches
    "ENABLE_CACHE": True,
    "CACHE_TTL_SECONDS": 0,
}

SECRET_KEY = SETTINGS["SECRET_KEY"]
LOG_LEVEL = SETTINGS["LOG_LEVEL"]
DATABASE_URL = SETTINGS["DATABASE_URL"]
VIES_URL = SETTINGS["VIES_URL"]
VIES_TIMEOUT_S = SETTINGS["VIES_TIMEOUT_S"]
ENABLE_CACHE = SETTINGS["ENABLE_CACHE"]
CACHE_TTL_SECONDS = SETTINGS["CACHE_TTL_SECONDS"]
