import os
import logging

from azure.core.exceptions import AzureError, HttpResponseError
from azure.identity import DefaultAzureCredential
from azure.keyvault.secrets import SecretClient
from dotenv import load_dotenv, find_dotenv


def _load_dotenv() -> None:
    """Load a local .env once; real app settings always win (override=False)."""
    auto = find_dotenv(usecwd=True)
    if auto:
        try:
            load_dotenv(dotenv_path=auto, override=False)
            logging.info(f"Loaded .env via find_dotenv: {auto}")
        except Exception as e:
            logging.warning(f"find_dotenv located {auto} but load failed: {e}")


_load_dotenv()

# Let the Azure Functions worker manage handlers; only set one up for local runs.
_root_logger = logging.getLogger()
_level_env = os.getenv("INSIGHT_LOG_LEVEL", "INFO").strip().upper()
_level = logging.getLevelName(_level_env)
if not isinstance(_level, int):
    _level = logging.INFO

if not _root_logger.handlers:
    logging.basicConfig(level=_level, format="%(asctime)s - %(levelname)s - [%(name)s] %(message)s")
else:
    _root_logger.setLevel(_level)

for noisy_logger in ("pymongo", "urllib3", "azure"):
    logging.getLogger(noisy_logger).setLevel(logging.WARNING)


# Simple in-process cache for secrets
_SECRET_CACHE: dict[str, str] = {}

KEY_VAULT_URL = os.getenv("KEY_VAULT_URL", "")

MONGO_CONNECTION_KEYS = [
    "MongoDb-Connection-String",
    "MONGODB_CONNECTION_STRING",
    "CUSTOMCONNSTR_MongoDb-Connection-String",
    "DB_CONNECTION_STRING",
]


def _vault_lookup(name: str) -> str | None:
    # Vault secret names only allow alphanumerics and dashes
    client = SecretClient(vault_url=KEY_VAULT_URL, credential=DefaultAzureCredential())
    for candidate in dict.fromkeys([name, name.replace("_", "-")]):
        try:
            value = client.get_secret(candidate).value
        except HttpResponseError:
            continue
        if value:
            return value
    return None


def get_secret(name: str, default: str | None = None) -> str | None:
    """Key Vault first when KEY_VAULT_URL is set, then the environment. Hits are cached."""
    if name in _SECRET_CACHE:
        return _SECRET_CACHE[name]

    value = None
    if KEY_VAULT_URL:
        try:
            value = _vault_lookup(name)
        except AzureError as e:
            logging.warning(f"Key Vault lookup for {name} failed, using environment: {e}")

    value = value or os.getenv(name)
    if value:
        _SECRET_CACHE[name] = value
        return value

    return default


def get_mongo_uri() -> str:
    for key in MONGO_CONNECTION_KEYS:
        val = get_secret(key)
        if val:
            return val

    # Never fall back to localhost:27017
    error_msg = f"MongoDB Connection String not found. Checked: {MONGO_CONNECTION_KEYS}"
    logging.critical(error_msg)
    raise RuntimeError(error_msg)


def get_db_name() -> str:
    return os.getenv("INSIGHT_DB_NAME", os.getenv("DB_NAME", "devops_insight"))


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def get_n8n_settings() -> dict:
    """Workflow-engine settings, read once and handed to WebhookProxy at construction."""
    prefix = os.getenv("N8N_WEBHOOK_PREFIX", "webhook-test").strip("/")
    return {
        "base_url": get_secret("N8N_BASE_URL", "http://localhost:5678"),
        "webhook_prefix": prefix,
        "report_path": os.getenv("N8N_REPORT_PATH", "/webhook/get-performance"),
        "timeout": _int_env("N8N_TIMEOUT_SECONDS", 30),
        "task_timeout": _int_env("REPORT_TASK_TIMEOUT_SECONDS", 30),
        "max_workers": _int_env("REPORT_MAX_WORKERS", 6),
    }


def collection_clear_allowed() -> bool:
    # Safety guard: bulk clear is a test/reset tool and must not run against prod.
    if os.getenv("APP_ENV", "dev") != "prod":
        return True
    return os.getenv("ALLOW_COLLECTION_CLEAR") == "1"
