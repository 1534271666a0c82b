"""
Constantes globales pour MCP Probe.
"""

# ============================================================================
# PROTOCOLE MCP
# ============================================================================
MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "mcp-probe"
CLIENT_VERSION = "1.0.0"

JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INTERNAL_ERROR = -32603

# ============================================================================
# TIMEOUTS (secondes)
# ============================================================================
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_HTTP_CONNECT_TIMEOUT = 5.0

# Délai d'attente de sortie du processus avant classification des erreurs de démarrage
STARTUP_EXIT_WAIT = 1.0

# ============================================================================
# SUPERVISION DES PROCESSUS
# ============================================================================
TERMINATE_GRACE_PERIOD = 2.0
TERMINATE_KILL_TIMEOUT = 1.0
REAP_INTERVAL = 0.1
RECENT_EXITS_MAX = 64

# ============================================================================
# STDIO
# ============================================================================
STDIO_STREAM_LIMIT_DEFAULT = 8 * 1024 * 1024  # 8 MiB
STDIO_STREAM_LIMIT_MIN = 64 * 1024
STDIO_STREAM_LIMIT_MAX = 64 * 1024 * 1024  # 64 MiB
STDIO_STREAM_LIMIT_ENV = "MCP_PROBE_STDIO_STREAM_LIMIT"
EARLY_OUTPUT_MAX_CHARS = 16 * 1024

# ============================================================================
# INSTRUMENTATION & DIAGNOSTIC
# ============================================================================
DEBUG_BUFFER_CAPACITY = 1000
DEBUG_LINE_PREVIEW = 100
ERROR_HISTORY_MAX = 50
ERROR_RECENT_COUNT = 10
EVIDENCE_MAX_CHARS = 300

CONFIG_PATH_ENV = "MCP_PROBE_CONFIG"
