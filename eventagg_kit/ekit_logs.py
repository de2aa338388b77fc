import sys
import logging


ALERT_LEVEL = logging.CRITICAL + 1
ALERT_LEVEL_NAME = "ALERT"


def setup_logger(level: int = logging.INFO):
    logging.addLevelName(ALERT_LEVEL, ALERT_LEVEL_NAME)

    class CustomHandler(logging.Handler):
        def emit(self, record):
            level = "[INFO]"
            if record.levelno == logging.DEBUG:
                level = "[DEBUG]"
            elif record.levelno == logging.WARNING:
                level = "[WARN] ⚠️ "
            elif record.levelno in [logging.ERROR, logging.CRITICAL]:
                level = "[ERROR] 🛑"
            elif record.levelno == ALERT_LEVEL:
                level = "[ALERT] 🚨"
            log_entry = self.format(record)
            log_entry = log_entry.replace("!!LEVEL!!", level, 1)
            sys.stderr.write(log_entry)
            sys.stderr.write("\n")
            sys.stderr.flush()

    handler = CustomHandler()
    handler.setFormatter(logging.Formatter('%(asctime)s.%(msecs)03d %(name)s !!LEVEL!! %(message)s', datefmt='%Y%m%d %H:%M:%S'))

    for name in logging.Logger.manager.loggerDict.keys():
        logging.getLogger(name).handlers = []
        logging.getLogger(name).propagate = True

    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(level)

    # httpx logs every request at INFO, too chatty for an hourly scheduler
    for noisy in ["httpx", "httpcore", "aiohttp.access"]:
        lg = logging.getLogger(noisy)
        lg.handlers = []
        lg.propagate = True
        lg.setLevel(logging.WARNING)


def alert(logger: logging.Logger, message, *args, **kwargs):
    """
    Log at the ALERT level, shown as [ALERT] once setup_logger() has run.
    """
    logger.log(ALERT_LEVEL, message, *args, **kwargs)
