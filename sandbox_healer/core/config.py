"""
Configuration
=============
Loads environment variables from .env file using python-dotenv.

Environment Variables:
    MAX_SANDBOX_ITERATIONS           — Heal loop iteration cap (default: 10)
    SANDBOX_POLL_INTERVAL_SECONDS    — Runner status poll interval (default: 5)
    SANDBOX_ITERATION_TIMEOUT_SECONDS — Wall clock limit per iteration (default: 300)
    CANONICAL_PORT                   — Port the generated app must listen on (default: 3000)
    WORKSPACE_ROOT                   — Directory holding one sub-directory per project
    STORE_DIR                        — Directory for the JSON project store
    SANDBOX_DOCKER_IMAGE             — Image used by the Docker sandbox backend
    EVENT_WEBHOOK_URL                — Optional webhook receiving heal loop events
    GEMINI_API_KEY / GROQ_API_KEY / OPENROUTER_API_KEY — Code repair LLM providers
    ENABLE_SANDBOX_API               — Allow runs via POST /sandbox/{id}/run (default: true)
    CORS_ORIGINS                     — Comma separated origins allowed to call the API
    API_HOST / API_PORT              — Bind address for `python main.py` (default: 127.0.0.1:8000)

Iteration Budget:
    The loop never runs more than MAX_SANDBOX_ITERATIONS cycles. Each cycle is
    bounded by SANDBOX_ITERATION_TIMEOUT_SECONDS, so the worst case for one
    project is the product of the two. PIPELINE_TIMEOUT_SECONDS is owned by
    the surrounding orchestrator and is only exposed here for reference.
"""
import os
from dotenv import load_dotenv

load_dotenv()

# Heal loop budget
MAX_SANDBOX_ITERATIONS = int(os.getenv("MAX_SANDBOX_ITERATIONS", 10))
SANDBOX_POLL_INTERVAL_SECONDS = float(os.getenv("SANDBOX_POLL_INTERVAL_SECONDS", 5))
SANDBOX_ITERATION_TIMEOUT_SECONDS = float(os.getenv("SANDBOX_ITERATION_TIMEOUT_SECONDS", 300))
PIPELINE_TIMEOUT_SECONDS = int(os.getenv("PIPELINE_TIMEOUT_SECONDS", 7200))

# Deterministic fixers
CANONICAL_PORT = int(os.getenv("CANONICAL_PORT", 3000))
AI_ESCALATION_MAX_FILES = int(os.getenv("AI_ESCALATION_MAX_FILES", 5))

# Storage
WORKSPACE_ROOT = os.getenv("WORKSPACE_ROOT", os.path.join(os.getcwd(), "workspaces"))
STORE_DIR = os.getenv("STORE_DIR", os.path.join(os.getcwd(), "store"))

# Iteration log excerpt (lines kept from the head and the tail of the runner output)
LOG_EXCERPT_HEAD_LINES = int(os.getenv("LOG_EXCERPT_HEAD_LINES", 100))
LOG_EXCERPT_TAIL_LINES = int(os.getenv("LOG_EXCERPT_TAIL_LINES", 100))

# Docker sandbox backend
SANDBOX_DOCKER_IMAGE = os.getenv("SANDBOX_DOCKER_IMAGE", "node:20-slim")
SANDBOX_INSTALL_COMMAND = os.getenv("SANDBOX_INSTALL_COMMAND", "npm install --no-audit --no-fund")
SANDBOX_BUILD_COMMAND = os.getenv("SANDBOX_BUILD_COMMAND", "npm run build")
SANDBOX_START_COMMAND = os.getenv("SANDBOX_START_COMMAND", "npm start")
SANDBOX_HEALTH_URL = os.getenv("SANDBOX_HEALTH_URL", f"http://127.0.0.1:{CANONICAL_PORT}/")
SANDBOX_STARTUP_WAIT_SECONDS = int(os.getenv("SANDBOX_STARTUP_WAIT_SECONDS", 15))

# Notifications
EVENT_WEBHOOK_URL = os.getenv("EVENT_WEBHOOK_URL", "")

# Code repair LLM providers
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY")

# Provider health cooldown
PROVIDER_COOLDOWN_THRESHOLD = int(os.getenv("PROVIDER_COOLDOWN_THRESHOLD", 4))
PROVIDER_COOLDOWN_SKIP_COUNT = int(os.getenv("PROVIDER_COOLDOWN_SKIP_COUNT", 5))

# HTTP surface
ENABLE_SANDBOX_API = os.getenv("ENABLE_SANDBOX_API", "true").lower() == "true"

# HTTP surface
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", 8000))
