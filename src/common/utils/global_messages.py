

class GlobalMessages:
    # Auth Messages
    INVALID_CREDENTIALS = "Invalid credentials"
    INVALID_TOKEN = "Invalid or expired token"
    ACCOUNT_ALREADY_EXISTS = "An account with this email already exists."
    ACCOUNT_CREATED = "Account created successfully."
    ACCOUNT_INACTIVE = "Your account is inactive. Please contact your administrator."
    CLINIC_INACTIVE = "This clinic account is inactive. Please contact support."
    USER_NOT_FOUND = "User not found"
    NO_ACCOUNT_FOR_EMAIL = "No account found with this email address."
    ACCESS_DENIED = "Access denied"
    LOGIN_SUCCESS = "Login successful."
    LOGOUT_SUCCESS = "Logged out successfully."
    LOGOUT_ALL_SUCCESS = "Logged out from all devices successfully."
    FORCE_LOGOUT_SUCCESS = "User has been logged out from all sessions."
    TOKEN_REFRESHED = "Token refreshed successfully."

    # OTP Messages
    OTP_SENT = "OTP sent to your email. Please verify to complete login."
    OTP_INVALID = "Invalid or expired OTP"
    OTP_COOLDOWN = "Please wait before requesting another OTP. Try again in a minute."
    OTP_SEND_FAILED = "Failed to send OTP email. Please try again later."
    OTP_CANCELLED = "Pending OTPs cancelled."
    OTP_RESEND_COOLDOWN = "Please wait before requesting another OTP. Try again in 30 seconds."
    OTP_DELIVERED = "OTP sent successfully to your email address"
    OTP_RESENT = "OTP resent successfully"
    OTP_VERIFIED = "OTP verified successfully"
    OTP_PURPOSE_NOT_ALLOWED = "Password reset codes are only issued through the password reset flow."

    # Password reset
    RESET_CODE_SENT = "If an account with this email exists, a password reset code has been sent."
    RESET_CODE_INVALID = "Invalid or expired reset code"
    PASSWORD_RESET_SUCCESS = "Password has been reset successfully. Please log in with your new password."

    # Audit logs
    AUDIT_LOG_STORED = "Audit log stored successfully"
    AUDIT_LOGS_REQUIRED = "logs must be a non-empty array"

    # Generic
    VALIDATION_FAILED = "Validation failed"
    INTERNAL_ERROR = "Internal server error"
