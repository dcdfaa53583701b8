# module storefront.app
import logging
import os

from storefront.app_setup.factory import create_app

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())

app = create_app()
