import os
from logging import INFO, StreamHandler, basicConfig
from logging.handlers import RotatingFileHandler

from ip_country_locator.common.constants import IPLOC_PORT

log_suffix = os.environ.get(IPLOC_PORT, "app")

log_format = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
date_format = "%Y-%m-%d %H:%M:%S"
ch = StreamHandler()
handler_rotating = RotatingFileHandler(f"app.{log_suffix}.log", maxBytes=1024 * 1024, backupCount=5)

basicConfig(level=INFO, handlers=(handler_rotating, ch), format=log_format, datefmt=date_format)
