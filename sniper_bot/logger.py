"""
Structured logging configuration for the sniper engine.

Provides JSON file logs, a coloured console format and a dedicated
snipe event logger.
"""

import logging
import logging.handlers
import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

DEFAULT_LOG_DIR = "logs"


class StructuredFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter for console output (human-readable).
    """

    COLOR_CODES = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors:
            color = self.COLOR_CODES.get(record.levelname, self.COLOR_CODES['RESET'])
            reset = self.COLOR_CODES['RESET']
        else:
            color = reset = ""

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        msg = f"{color}[{timestamp}] [{record.levelname:8s}]{reset} {record.getMessage()}"

        if hasattr(record, 'extra_data') and record.extra_data:
            context = " | ".join(
                f"{k}={v}" for k, v in record.extra_data.items() if k != 'snipe_event'
            )
            if context:
                msg += f" ({context})"

        if record.exc_info:
            msg += f"\n{self.formatException(record.exc_info)}"

        return msg


def _is_snipe_event(record: logging.LogRecord) -> bool:
    return getattr(record, 'snipe_event', False)


def setup_logging(
    level: str = "INFO",
    log_dir: str = DEFAULT_LOG_DIR,
    enable_console: bool = True,
    enable_file: bool = True,
):
    """
    Configure logging system with both file and console handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating JSON log files
        enable_console: Enable console output
        enable_file: Enable file output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    if enable_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(HumanReadableFormatter())
        console_handler.setLevel(getattr(logging, level.upper()))
        root_logger.addHandler(console_handler)

    if enable_file:
        os.makedirs(log_dir, exist_ok=True)

        main_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "bot.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        main_handler.setFormatter(StructuredFormatter())
        main_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(main_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "errors.log"),
            maxBytes=5 * 1024 * 1024,  # 5MB
            backupCount=3
        )
        error_handler.setFormatter(StructuredFormatter())
        error_handler.setLevel(logging.ERROR)
        root_logger.addHandler(error_handler)

        snipe_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "snipes.log"),
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=10
        )
        snipe_handler.setFormatter(StructuredFormatter())
        snipe_handler.addFilter(_is_snipe_event)
        root_logger.addHandler(snipe_handler)

    # Quiet noisy libraries
    logging.getLogger("solders").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)


class SnipeLogger:
    """
    Specialized logger for snipe lifecycle events.

    Records carry ``snipe_event`` so setup_logging routes them to snipes.log.

    Usage:
        snipe_logger = SnipeLogger()
        snipe_logger.log_entry(asset_id="ABC", amount_sol=0.1, signature="xyz...")
        snipe_logger.log_exit(asset_id="ABC", pnl_pct=15.5, trigger="take_profit")
    """

    def __init__(self, name: str = "snipes"):
        self.logger = logging.getLogger(name)

    def _emit(self, message: str, data: Dict[str, Any], level: int = logging.INFO):
        data = dict(data)
        data['timestamp'] = datetime.now().isoformat()
        self.logger.log(level, message, extra={'extra_data': data, 'snipe_event': True})

    def log_entry(
        self,
        asset_id: str,
        amount_sol: float,
        signature: str,
        pool: str = "",
        entry_price: float = 0.0,
        token_amount: float = 0.0
    ):
        """Log an opened snipe"""
        self._emit("SNIPE", {
            'event_type': 'SNIPE',
            'asset_id': asset_id,
            'amount_sol': amount_sol,
            'signature': signature,
            'pool': pool,
            'entry_price': entry_price,
            'token_amount': token_amount,
        })

    def log_exit(
        self,
        asset_id: str,
        amount_sol: float,
        signature: str,
        trigger: str,
        pnl_sol: float = 0.0,
        pnl_pct: float = 0.0,
        hold_time_seconds: float = 0.0,
        sell_percent: float = 100.0
    ):
        """Log an auto-sell"""
        self._emit("SELL", {
            'event_type': 'SELL',
            'asset_id': asset_id,
            'amount_sol': amount_sol,
            'signature': signature,
            'trigger': trigger,
            'pnl_sol': pnl_sol,
            'pnl_pct': pnl_pct,
            'hold_time_seconds': hold_time_seconds,
            'sell_percent': sell_percent,
        })

    def log_protection(
        self,
        asset_id: str,
        reason: str,
        trader: Optional[str] = None,
        sol_amount: float = 0.0
    ):
        """Log a sniper/anti-rug protection event"""
        self._emit("PROTECTION", {
            'event_type': 'PROTECTION',
            'asset_id': asset_id,
            'reason': reason,
            'trader': trader,
            'sol_amount': sol_amount,
        }, level=logging.WARNING)
