"""
Constants
Fixed file names and values shared by the deterministic fixers.
"""
PACKAGE_MANIFEST = "package.json"
ENV_FILE = ".env"
ENV_PLACEHOLDER = "placeholder"
LATEST_VERSION = "latest"

# Files scanned for PORT=<n> assignments when a port conflict is detected
PORT_CONFIG_FILES = (
    ".env",
    "next.config.js",
    "next.config.ts",
    "vite.config.ts",
    "server.ts",
    "server.js",
)

# Skeleton used when the generated project has no manifest yet
DEFAULT_MANIFEST = {
    "name": "migrated-app",
    "version": "1.0.0",
    "dependencies": {},
    "devDependencies": {},
}

TIMED_OUT_LOG_LINE = "Sandbox timed out"
NO_LOGS_LINE = "No logs available"
