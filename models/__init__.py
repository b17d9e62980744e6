from .db import db
from .account import Account
from .session import Session
from .login_attempt import LoginAttempt
from .rate_limit import RateLimitBucket
