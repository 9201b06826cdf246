import os


def _bool_env(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


class Config:
    BASE_DIR = os.path.dirname(os.path.dirname(__file__))
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_DIR = None if DATABASE_URL else os.path.join(BASE_DIR, "database")
    DB_PATH = DATABASE_URL or os.path.join(DATABASE_DIR, "plataforma_cotacoes.db")
    DB_AUTO_INIT = _bool_env("DB_AUTO_INIT", True)

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-plataforma-cotacoes")
    LOG_JSON = _bool_env("LOG_JSON", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    DOCUMENT_TX_MAX_ATTEMPTS = _int_env("DOCUMENT_TX_MAX_ATTEMPTS", 5)
    DOCUMENT_TX_RETRY_DELAY_MS = _int_env("DOCUMENT_TX_RETRY_DELAY_MS", 20)

    IMPORT_BATCH_SIZE = _int_env("IMPORT_BATCH_SIZE", 20)
    IMPORT_CHUNK_ROWS = _int_env("IMPORT_CHUNK_ROWS", 5000)
    IMPORT_CSV_DELIMITER = os.environ.get("IMPORT_CSV_DELIMITER", ";")
    COTACOES_IMPORT_CSV = os.environ.get("COTACOES_IMPORT_CSV")
    STOCK_WRITE_BATCH_SIZE = _int_env("STOCK_WRITE_BATCH_SIZE", 50)

    COTACAO_STATUS_LIVRE = _bool_env("COTACAO_STATUS_LIVRE", False)

    SUBPRODUTO_SYNC_INLINE = _bool_env("SUBPRODUTO_SYNC_INLINE", True)
    SUBPRODUTO_SYNC_MAX_ATTEMPTS = _int_env("SUBPRODUTO_SYNC_MAX_ATTEMPTS", 4)
    SUBPRODUTO_SYNC_BACKOFF_SECONDS = _int_env("SUBPRODUTO_SYNC_BACKOFF_SECONDS", 30)
    SUBPRODUTO_SYNC_MAX_BACKOFF_SECONDS = _int_env("SUBPRODUTO_SYNC_MAX_BACKOFF_SECONDS", 600)
    SUBPRODUTO_SYNC_WORKER_BATCH_SIZE = _int_env("SUBPRODUTO_SYNC_WORKER_BATCH_SIZE", 50)
    SUBPRODUTO_SYNC_WORKER_INTERVAL_SECONDS = _int_env("SUBPRODUTO_SYNC_WORKER_INTERVAL_SECONDS", 5)

    def __init__(self):
        env = os.environ.get("FLASK_ENV", "development").lower()
        if env == "production" and not self.DATABASE_URL:
            raise RuntimeError("DATABASE_URL nao definida para ambiente de producao.")
        if env == "production" and self.SECRET_KEY == "dev-secret-plataforma-cotacoes":
            raise RuntimeError("SECRET_KEY insegura para producao.")
