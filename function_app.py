import logging

import azure.functions as func
from dotenv import load_dotenv

# Load local .env for dev convenience (local.settings.json is handled by Functions host)
load_dotenv()

logging.getLogger("httpx").setLevel(logging.WARNING)

app = func.FunctionApp()

# Import endpoint modules so their routes register with the shared app.
import forward_email_endpoints  # noqa: E402,F401
