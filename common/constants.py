"""Project-wide constants (timeouts, protocol strings, on-disk locations)."""

APP_DIR_NAME: str = ".zapshare"

# Session lifecycle
INACTIVITY_TIMEOUT_SECONDS: float = 30 * 60
SHUTDOWN_GRACE_SECONDS: float = 5.0
LISTENER_CLOSE_TIMEOUT_SECONDS: float = 2.0

# Per-connection protocol timing
KEEPALIVE_INTERVAL_SECONDS: float = 30.0
METADATA_TO_PAYLOAD_DELAY_SECONDS: float = 0.5
AUTH_FAILURE_CLOSE_DELAY_SECONDS: float = 1.0

# Receiver
CONNECT_TIMEOUT_SECONDS: float = 10.0
MAX_PASSWORD_ATTEMPTS: int = 3
DEFAULT_CLIENT_NAME: str = "Unknown client"

# Tunnel
TUNNEL_TIMEOUT_SECONDS: float = 30.0
TUNNEL_ATTEMPT_TIMEOUT_SECONDS: float = 20.0
DEFAULT_RELAY_HOST: str = "serveo.net"
DEFAULT_SHORTENER_URL: str = "https://tinyurl.com/api-create.php"
SHORTENER_TIMEOUT_SECONDS: float = 10.0

# Wire protocol
INVALID_PASSWORD_MESSAGE: str = "Invalid password"
WEBSOCKET_PATH: str = "/"

GENERATED_PASSWORD_LENGTH: int = 6
