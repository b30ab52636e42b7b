from app.models.user import User
from app.models.token_blacklist import TokenBlacklist
from app.models.user_logout_timestamp import UserLogoutTimestamp
