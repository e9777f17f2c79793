"""Internal constants shared across the library."""

DEFAULT_API_URL = "https://api.smartthings.com"
DEFAULT_KEY_URL = "https://key.smartthings.com"
DEFAULT_REFRESH_URL = "https://auth-global.api.smartthings.com/oauth/token"
USER_AGENT = "smartapp-sdk-python"

# Mode and security-arm-state events carry no subscription name, so they are
# routed to subscribed-event handlers registered under these fixed names.
MODE_CHANGE_HANDLER = "modeChangeHandler"
SECURITY_ARM_STATE_HANDLER = "securityArmStateHandler"

FORBIDDEN_BODY = "Forbidden"
