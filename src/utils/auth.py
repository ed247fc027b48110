import pyotp

from config import ROBINHOOD_MFA_SECRET
from . import logger


# Get a one-time MFA code from the configured TOTP secret
def get_mfa_code_from_secret(secret=None):
    secret = secret if secret is not None else ROBINHOOD_MFA_SECRET
    if not secret:
        return None
    try:
        return pyotp.TOTP(secret).now()
    except Exception as e:
        logger.error(f"Could not generate MFA code from secret: {e}")
        return None
