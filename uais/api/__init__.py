"""HTTP API layer (FastAPI).

This module exposes a small, versioned `/api/v1` surface that the dashboard uses to:
- list configured runners
- start a runner and stream its output
- send input to a running job (e.g. duplicate-session confirmations)

The API is intentionally thin: core behavior lives in `uais/runtime`.
"""
