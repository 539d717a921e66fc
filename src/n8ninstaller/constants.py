"""Fixed values shared across the installer."""

DIR_MODE = 0o755
FILE_MODE = 0o644
SCRIPT_MODE = 0o755
SECRET_MODE = 0o600

DEFAULT_DB_USER = "user"
DEFAULT_DB_PASSWORD = "n8n_password"
DEFAULT_DB_NAME = "n8n"
DEFAULT_TIMEZONE = "Europe/Warsaw"
DEFAULT_TUNNEL_NAME = "n8n-tunnel"

POSTGRES_IMAGE = "postgres:15.8"
N8N_IMAGE = "n8nio/n8n"
N8N_CONTAINER_PORT = 5678
N8N_HOST_PORT = 8443

TUNNEL_SERVICE_NAME = "cloudflared"
TUNNEL_SERVICE_RESTART_SEC = 5
SERVICE_SETTLE_SECONDS = 2
DOCKER_RESTART_SETTLE_SECONDS = 5
RESTORE_DB_SETTLE_SECONDS = 5
DOCKER_PROBE_TIMEOUT_SECONDS = 30

BACKUP_RETENTION_DAYS = 30
BACKUP_SCHEDULE = "0 3 * * *"
BACKUP_DATE_FORMAT = "%Y-%m-%d"

DOCKER_INSTALL_SCRIPT_URL = "https://get.docker.com"
CLOUDFLARED_RELEASE_URL = (
    "https://github.com/cloudflare/cloudflared/releases/latest/download/cloudflared-linux-{arch}"
)

UUID_PATTERN = r"[a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12}"
