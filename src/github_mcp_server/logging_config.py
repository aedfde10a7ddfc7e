import json
import logging
import re
import sys

# Personal, OAuth, user, server and refresh tokens plus fine-grained PATs
_TOKEN_PATTERN = re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)\S+", re.IGNORECASE)

CONTEXT_FIELDS = (
    "tool",
    "method",
    "path",
    "attempt",
    "outcome",
    "status",
    "duration_ms",
    "retry_in",
)


def sanitize_token(token: str) -> str:
    """Mask a token for display, keeping its prefix and last four characters."""
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}***{token[-4:]}"


def redact(text: str) -> str:
    text = _BEARER_PATTERN.sub(r"\1[REDACTED]", text)
    return _TOKEN_PATTERN.sub("[REDACTED]", text)


class SafeStreamHandler(logging.StreamHandler):
    """
    Stream handler that gracefully handles closed streams during shutdown.
    """

    def emit(self, record):
        try:
            super().emit(record)
        except (ValueError, OSError) as e:
            # stdio is torn down by the client before we stop logging
            if "closed file" in str(e).lower() or "bad file descriptor" in str(e).lower():
                pass
            else:
                raise


class CredentialRedactionFilter(logging.Filter):
    """
    Masks anything that looks like a GitHub token or bearer header.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class StructuredLogFormatter(logging.Formatter):
    """
    Formats log records as structured JSON with contextual fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_record[field] = value
        if record.exc_info:
            log_record["exception"] = redact(self.formatException(record.exc_info))
        elif record.exc_text:
            log_record["exception"] = redact(record.exc_text)
        return json.dumps(log_record, ensure_ascii=False)


def configure_logging(log_level: str = "INFO") -> None:
    """
    Centralized logging configuration for the GitHub MCP Server.
    Logs go to stderr; stdout belongs to the MCP transport.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = SafeStreamHandler(sys.stderr)
    handler.setFormatter(StructuredLogFormatter())
    handler.addFilter(CredentialRedactionFilter())
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
    logging.getLogger("asyncio").setLevel("WARNING")
    logging.getLogger("aiohttp").setLevel("WARNING")
    logging.getLogger("mcp").setLevel("WARNING")
