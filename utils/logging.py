"""
This module contains the custom logger and formatter for the application.

To use the custom logger, install it as the root logger (see `configure_logging`)
and log through the standard `logging` functions:

        import logging
        logging.info("[Scanner] Fetched window", extra={"from_block": 0})
The resulting log message will be in JSON format:
    {
        "timestamp": "2026-03-15 14:29:31,000",
        "level": "INFO",
        "fields": {
            "message": "[Scanner] Fetched window",
            "from_block": 0
        },
        "module": "log_scanner",
        "func_name": "fetch_window",
        "path_name": "/.../scanner/log_scanner.py",
        "line_no": 41
    }
"""

import logging

from pythonjsonlogger import jsonlogger


class CustomLogger(logging.Logger):
    def makeRecord(
        self,
        name,
        level,
        fn,
        lno,
        msg,
        args,
        exc_info,
        func=None,
        extra=None,
        sinfo=None,
    ):
        if extra:
            extra = {"fields": extra}
        record = super(CustomLogger, self).makeRecord(
            name,
            level,
            fn,
            lno,
            msg,
            args,
            exc_info,
            func=func,
            extra=extra,
            sinfo=sinfo,
        )
        return record


class JsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        fields = {"message": record.getMessage()}
        fields.update(record.__dict__.get("fields", {}))
        # exc_info / stack_info rendered by the base formatter
        fields.update(message_dict)
        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["fields"] = fields
        log_record["module"] = record.module
        log_record["func_name"] = record.funcName
        log_record["path_name"] = record.pathname
        log_record["line_no"] = record.lineno


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logger = CustomLogger("default_python_logger")
    logger.setLevel(level)

    # Create a stream handler for stdout
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(JsonFormatter())

    # Add the stream handler to the logger
    logger.addHandler(stream_handler)
    logging.root = logger
    return logger
