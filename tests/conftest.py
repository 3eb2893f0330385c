import os
import tempfile

# Settings are read at import time; point everything at throwaway local resources first.
_db_file = tempfile.NamedTemporaryFile(suffix=".sqlite", delete=False)
_db_file.close()
os.environ["DATABASE_DSN"] = f"sqlite+aiosqlite:///{_db_file.name}"
os.environ["ENV"] = "local"
os.environ["EVENT_BUS_PROVIDER"] = "noop"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret"
for _key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_PHONE_NUMBER", "SENDGRID_API_KEY", "REDIS_URL"):
    os.environ.pop(_key, None)
