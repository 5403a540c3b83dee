import json
import sys
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    SUCCESS = "SUCCESS"


class Colors:
    """ANSI color codes for console output"""
    RESET = '\033[0m'
    BOLD = '\033[1m'
    DIM = '\033[2m'

    BRIGHT_BLACK = '\033[90m'
    BRIGHT_RED = '\033[91m'
    BRIGHT_GREEN = '\033[92m'
    BRIGHT_YELLOW = '\033[93m'
    BRIGHT_BLUE = '\033[94m'
    BRIGHT_CYAN = '\033[96m'
    WHITE = '\033[37m'


LEVEL_STYLES = {
    LogLevel.DEBUG: (Colors.BRIGHT_CYAN, "🔍"),
    LogLevel.INFO: (Colors.BRIGHT_BLUE, "ℹ️"),
    LogLevel.WARNING: (Colors.BRIGHT_YELLOW, "⚠️"),
    LogLevel.ERROR: (Colors.BRIGHT_RED, "❌"),
    LogLevel.SUCCESS: (Colors.BRIGHT_GREEN, "✅"),
}

MAX_EXTRA_LENGTH = 100


class FitCoachLogger:
    """Colorized console logger used by the plan generation pipeline.

    Lines look like ``[12:00:01.123] ℹ️ [PLAN/START] [INFO] message | user_id=4, step=1``
    so a single user's generation can be followed by grepping its ``user_id``.
    """

    def __init__(self, service_name: str = "FITCOACH", enable_colors: bool = True, stream=None):
        self.service_name = service_name.upper()
        self.enable_colors = enable_colors
        self.stream = stream

    @property
    def _out(self):
        return self.stream or sys.stdout

    def _colorize(self, text: str, color: str) -> str:
        if not self.enable_colors:
            return text
        return f"{color}{text}{Colors.RESET}"

    def _prefix(self, context: Optional[str]) -> str:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        scope = self.service_name if not context else f"{self.service_name}/{context.upper()}"
        return f"{self._colorize(f'[{timestamp}]', Colors.DIM)} {self._colorize(f'[{scope}]', Colors.BRIGHT_BLACK)}"

    @staticmethod
    def _format_extra(value: Any) -> str:
        if isinstance(value, (dict, list)):
            rendered = json.dumps(value, default=str, separators=(',', ':'))
        else:
            rendered = str(value)
        if len(rendered) > MAX_EXTRA_LENGTH:
            rendered = rendered[:MAX_EXTRA_LENGTH] + "..."
        return rendered

    def _write(self, line: str):
        print(line, file=self._out)
        self._out.flush()

    def _log(self, level: LogLevel, message: str, context: Optional[str] = None, **kwargs):
        color, emoji = LEVEL_STYLES.get(level, (Colors.WHITE, ""))
        level_text = self._colorize(f"[{level.value}]", color + Colors.BOLD)
        line = f"{self._prefix(context)} {emoji} {level_text} {message}"

        if kwargs:
            extras = ", ".join(f"{key}={self._format_extra(value)}" for key, value in kwargs.items())
            line += self._colorize(f" | {extras}", Colors.DIM)

        self._write(line)

    def debug(self, message: str, context: Optional[str] = None, **kwargs):
        """Log debug message"""
        self._log(LogLevel.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Optional[str] = None, **kwargs):
        """Log info message"""
        self._log(LogLevel.INFO, message, context, **kwargs)

    def warning(self, message: str, context: Optional[str] = None, **kwargs):
        """Log warning message"""
        self._log(LogLevel.WARNING, message, context, **kwargs)

    def error(self, message: str, context: Optional[str] = None, **kwargs):
        """Log error message"""
        self._log(LogLevel.ERROR, message, context, **kwargs)

    def success(self, message: str, context: Optional[str] = None, **kwargs):
        """Log success message"""
        self._log(LogLevel.SUCCESS, message, context, **kwargs)

    def banner(self, message: str, context: Optional[str] = None, char: str = "═", width: int = 60):
        """Print a centered banner line"""
        content = f" {message} "
        if len(content) < width - 4:
            padding = (width - len(content)) // 2
            content = char * padding + content + char * (width - len(content) - padding)
        self._write(f"{self._prefix(context)} {self._colorize(content, Colors.BRIGHT_CYAN + Colors.BOLD)}")

    def section_start(self, section_name: str, context: Optional[str] = None):
        """Open a section banner, e.g. around one user's generation run"""
        self.banner(f"🚀 {section_name.upper()} STARTED", context, "═", 50)

    def section_end(self, section_name: str, context: Optional[str] = None, success: bool = True):
        """Close a section banner"""
        status_text = "✅ COMPLETED" if success else "❌ FAILED"
        self.banner(f"{section_name.upper()} {status_text}", context, "═", 50)


# Global logger instances for different services
plan_logger = FitCoachLogger("PLAN")
llm_logger = FitCoachLogger("LLM")
db_logger = FitCoachLogger("DATABASE")
api_logger = FitCoachLogger("API")


def get_logger(service_name: str) -> FitCoachLogger:
    """Get a logger instance for a specific service"""
    return FitCoachLogger(service_name)
