"""
Rememberly Backend — Middleware Package

Request → [Request ID] → [Logging] → [CORS] → Route Handler

Request ID runs outermost so the access log line and every error body
carry the same id.
"""
