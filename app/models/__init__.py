from app.models.account import Account
from app.models.role_profile import RoleProfileRecord
from app.models.otp_challenge import OtpChallengeRecord
from app.models.selected_role import SelectedRoleRecord

__all__ = ["Account", "RoleProfileRecord", "OtpChallengeRecord", "SelectedRoleRecord"]
